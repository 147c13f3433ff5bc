"""サインインフローと資格情報管理のプロパティテスト"""

import asyncio
import unittest

from fake_identity import RETURN_URL, FakeClock, FakeIdentityService
from hypothesis import HealthCheck, given, settings, strategies as st

from kagi import AuthInstance, MemoryNavigator, MemoryStore, StorageProvider
from kagi.auth.flow import has_auth_code

CONFIG = {
    "apiKey": "test-api-key",
    "providers": ["google.com"],
    "redirectURL": "https://app.example.com/callback",
}

safe_chars = st.characters(blacklist_categories=("Cs",))

json_values = st.recursive(
    st.none() | st.booleans() | st.integers(-10**6, 10**6) | st.text(safe_chars, max_size=20),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(safe_chars, max_size=10), children, max_size=4),
    max_leaves=10,
)

# 認可コードマーカーを含まないURL
plain_urls = st.builds(
    lambda path, query: f"https://app.example.com/{path}" + (f"?{query}" if query else ""),
    st.text(alphabet="abcdefghijklmnopqrstuvwxyz/-", max_size=20),
    st.text(alphabet="abdefghijklmnopqrstuvwxyz=&", max_size=30),
).filter(lambda url: not has_auth_code(url))


def _auth(client, navigator, clock=None):
    storage = StorageProvider(durable=MemoryStore(), ephemeral=MemoryStore())
    return AuthInstance(
        CONFIG,
        storage=storage,
        navigator=navigator,
        client=client,
        clock=clock or FakeClock(),
    )


class TestAuthProperties(unittest.TestCase):
    """フローの不変条件を検証する"""

    @given(plain_urls, st.integers(min_value=1, max_value=5))
    @settings(max_examples=50, deadline=None)
    def test_callback_detection_is_idempotent(self, url, repeats):
        """認可コードの無いURLでは何度呼んでも副作用が無い"""
        service = FakeIdentityService()
        navigator = MemoryNavigator(url)

        async def scenario():
            client = service.client()
            auth = _auth(client, navigator)
            results = [await auth.handle_post_sign_in_redirect() for _ in range(repeats)]
            await client.aclose()
            return results, auth

        results, auth = asyncio.run(scenario())
        self.assertEqual(results, [None] * repeats)
        self.assertEqual(service.calls, [])
        self.assertEqual(navigator.history, [url])
        self.assertIsNone(auth.current_user)

    @given(json_values)
    @settings(max_examples=40, deadline=None, suppress_health_check=[HealthCheck.too_slow])
    def test_context_round_trip(self, context):
        """サインイン時の context が値としてそのまま返る"""
        service = FakeIdentityService()
        navigator = MemoryNavigator("https://app.example.com/login")

        async def scenario():
            client = service.client()
            auth = _auth(client, navigator)
            await auth.sign_in_with_provider("google.com", context=context)
            navigator.arrive(RETURN_URL)
            returned = await auth.handle_post_sign_in_redirect()
            await client.aclose()
            return returned

        self.assertEqual(asyncio.run(scenario()), context)

    @given(st.integers(min_value=1, max_value=86400), st.floats(min_value=0, max_value=2e9))
    @settings(max_examples=50, deadline=None)
    def test_observed_tokens_are_never_expired_after_sign_in(self, expires_in, now):
        """サインイン直後に通知される資格情報は常に完全で未失効"""
        service = FakeIdentityService()
        service.expires_in = str(expires_in)
        navigator = MemoryNavigator("https://app.example.com/login")
        clock = FakeClock(now)
        observed = []

        async def scenario():
            client = service.client()
            auth = _auth(client, navigator, clock)
            auth.subscribe(observed.append)
            await auth.sign_in_with_provider("google.com")
            navigator.arrive(RETURN_URL)
            await auth.handle_post_sign_in_redirect()
            await client.aclose()

        asyncio.run(scenario())
        credentials = [c for c in observed if c is not None]
        self.assertEqual(len(credentials), 1)
        details = credentials[0].token_details
        self.assertIsNotNone(details)
        self.assertFalse(details.is_expired(clock()))
        self.assertEqual(details.expires_at, now + expires_in)

    @given(st.integers(min_value=2, max_value=12))
    @settings(max_examples=20, deadline=None)
    def test_refresh_requests_are_coalesced(self, callers):
        """N件の同時呼び出しでも更新リクエストは1件"""
        service = FakeIdentityService(refresh_delay=0.001)
        navigator = MemoryNavigator("https://app.example.com/login")
        clock = FakeClock()

        async def scenario():
            client = service.client()
            auth = _auth(client, navigator, clock)
            await auth.sign_in_with_provider("google.com")
            navigator.arrive(RETURN_URL)
            await auth.handle_post_sign_in_redirect()
            clock.advance(3601)
            tokens = await asyncio.gather(*(auth.get_id_token() for _ in range(callers)))
            await client.aclose()
            return tokens

        tokens = asyncio.run(scenario())
        self.assertEqual(service.count("token"), 1)
        self.assertEqual(set(tokens), {"id-token-r1"})


if __name__ == "__main__":  # pragma: no cover - 実行用
    unittest.main()
