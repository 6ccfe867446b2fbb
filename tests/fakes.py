# tests/fakes.py
"""Playwright stand-ins.

These classes implement only the slice of the Playwright async API that
BrowserScanner and InteractionProbe call, so the dynamic phases can be
exercised without launching a browser.
"""


class FakeRequest:
    def __init__(self, url, method="GET", resource_type="fetch"):
        self.url = url
        self.method = method
        self.resource_type = resource_type


class FakeResponse:
    def __init__(self, url, status=200, headers=None, body="", method="GET"):
        self.url = url
        self.status = status
        self.headers = headers or {}
        self.request = FakeRequest(url, method)
        self._body = body

    async def text(self):
        return self._body


class FakeWebSocket:
    def __init__(self, url):
        self.url = url


class FakeElement:
    def __init__(self, visible=True):
        self._visible = visible

    async def is_visible(self):
        return self._visible


class FakeKeyboard:
    def __init__(self, page):
        self._page = page
        self.pressed = []

    async def press(self, key):
        self.pressed.append(key)
        self._page._submit()


class FakePage:
    """Minimal async page.

    Args:
        html: Value returned by content()
        elements: selector -> visible flag for query_selector()
        selector_results: selector -> value returned by eval_on_selector_all()
        hints: value returned by evaluate()
        load_events: (kind, object) pairs emitted during goto()
        chat_responses: responses emitted once a message is submitted
        goto_error: exception raised by goto()
    """

    def __init__(
        self,
        html="<html></html>",
        elements=None,
        selector_results=None,
        hints=None,
        load_events=None,
        chat_responses=None,
        main_response=None,
        goto_error=None,
        final_url=None,
    ):
        self.html = html
        self.elements = elements or {}
        self.selector_results = selector_results or {}
        self.hints = hints or {}
        self.load_events = load_events or []
        self.chat_responses = chat_responses or []
        self.main_response = main_response
        self.goto_error = goto_error
        self.url = final_url or "about:blank"
        self._final_url = final_url
        self.handlers = {}
        self.routes = []
        self.filled = {}
        self.clicked = []
        self.waits = []
        self.keyboard = FakeKeyboard(self)

    def on(self, event, handler):
        self.handlers.setdefault(event, []).append(handler)

    def _emit(self, event, obj):
        for handler in self.handlers.get(event, []):
            handler(obj)

    async def route(self, pattern, handler):
        self.routes.append((pattern, handler))

    async def goto(self, url, wait_until=None, timeout=None):
        if self.goto_error is not None:
            raise self.goto_error
        self.url = self._final_url or url
        for kind, obj in self.load_events:
            self._emit(kind, obj)
        return self.main_response

    async def wait_for_timeout(self, ms):
        self.waits.append(ms)

    async def content(self):
        return self.html

    async def eval_on_selector_all(self, selector, script):
        return self.selector_results.get(selector, [] if selector != "meta" else {})

    async def evaluate(self, script):
        return self.hints

    async def query_selector(self, selector):
        if selector in self.elements:
            return FakeElement(self.elements[selector])
        return None

    async def fill(self, selector, value):
        self.filled[selector] = value

    async def click(self, selector):
        self.clicked.append(selector)
        self._submit()

    def _submit(self):
        for response in self.chat_responses:
            self._emit("response", response)


class FakeContext:
    def __init__(self, page, cookies=None):
        self.page = page
        self._cookies = cookies or []
        self.closed = False

    async def new_page(self):
        return self.page

    async def cookies(self):
        return self._cookies

    async def close(self):
        self.closed = True


class FakeBrowser:
    def __init__(self, page, cookies=None):
        self.context = FakeContext(page, cookies)
        self.context_kwargs = None
        self.closed = False

    async def new_context(self, **kwargs):
        self.context_kwargs = kwargs
        return self.context

    async def close(self):
        self.closed = True
