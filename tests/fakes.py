# tests/fakes.py
from core.exceptions import NotificationDeliveryFailure


class FakeProvider:
    """
    Scripted stand-in for GeminiClient.

    `script` is consumed one item per generate() call: a string is returned,
    an exception instance is raised. When the script runs out, `default`
    is returned.
    """

    def __init__(self, script=None, default="The adventure continues.", ping_errors=None):
        self.script = list(script or [])
        self.default = default
        self.ping_errors = dict(ping_errors or {})
        self.calls = []
        self.pings = []

    async def generate(self, secret, prompt, *, safety_settings=None, generation_config=None):
        self.calls.append({"secret": secret, "prompt": prompt,
                           "safety_settings": safety_settings,
                           "generation_config": generation_config})
        if self.script:
            item = self.script.pop(0)
            if isinstance(item, BaseException):
                raise item
            return item
        return self.default

    async def ping(self, secret):
        self.pings.append(secret)
        if secret in self.ping_errors:
            raise self.ping_errors[secret]
        return "hello"

    @property
    def secrets_used(self):
        return [c["secret"] for c in self.calls]


class FakeNotifier:
    def __init__(self, fail_times=0, configured=True):
        self.fail_times = fail_times
        self.configured = configured
        self.sent = []
        self.attempts = 0

    async def send(self, subject, text):
        self.attempts += 1
        if self.attempts <= self.fail_times:
            raise NotificationDeliveryFailure("webhook down")
        self.sent.append((subject, text))

    async def send_test(self):
        await self.send("QuestGPT: Test Notification", "test")


def make_keys(n):
    return [(f"GEMINI_API_KEY_{i}", f"secret-{i}") for i in range(1, n + 1)]


