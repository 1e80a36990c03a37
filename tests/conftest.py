import pytest


def make_packed(payload: str, words, radix: int = 36) -> str:
    """Build a minimal eval(function(p,a,c,k,e,d)...) script whose tokens map to ``words``."""
    body = payload.replace("'", "\\'")
    symtab = "|".join(words)
    return (
        "eval(function(p,a,c,k,e,d){return p}"
        f"('{body}',{radix},{len(words)},'{symtab}'.split('|'),0,{{}}))"
    )


class FakeFetch:
    """Async stand-in for fetch_html that serves canned responses by URL."""

    def __init__(self, responses):
        self.responses = responses
        self.calls = []

    async def __call__(self, url, headers=None, **kwargs):
        self.calls.append((url, headers))
        try:
            return self.responses[url]
        except KeyError:
            raise AssertionError(f"unexpected fetch: {url}") from None


@pytest.fixture
def packed():
    return make_packed


@pytest.fixture
def fake_fetch():
    return FakeFetch
