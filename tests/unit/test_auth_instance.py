"""AuthInstance のユニットテスト"""

import asyncio
import json
import unittest
from unittest.mock import patch

from fake_identity import RETURN_URL, FakeClock, FakeIdentityService

from kagi import AuthInstance, ConfigurationError, MemoryNavigator, MemoryStore, StorageProvider
from kagi.errors import TokenRefreshError
from kagi.models import Credential, FlowState, TokenDetails

STORAGE_KEY = "Auth:User:test-api-key:default"
SESSION_KEY = "Auth:SessionId:test-api-key:default"
CONFIG = {
    "apiKey": "test-api-key",
    "providers": ["google.com"],
    "redirectURL": "https://app.example.com/callback",
}


def _stored_record(expires_at, email="old@example.com"):
    tokens = TokenDetails(id_token="id-token-0", refresh_token="refresh-token-0", expires_at=expires_at)
    credential = Credential.from_lookup({"localId": "uid-1", "email": email}, tokens)
    return json.dumps(credential.to_dict())


class AuthInstanceTestBase(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.service = FakeIdentityService()
        self.client = self.service.client()
        self.clock = FakeClock()
        self.storage = StorageProvider(durable=MemoryStore(), ephemeral=MemoryStore())
        self.navigator = MemoryNavigator("https://app.example.com/")

    async def asyncTearDown(self):
        await self.client.aclose()

    def _auth(self, config=None):
        return AuthInstance(
            config or CONFIG,
            storage=self.storage,
            navigator=self.navigator,
            client=self.client,
            clock=self.clock,
        )


class TestAuthInstanceConstruction(AuthInstanceTestBase):
    def test_invalid_config(self):
        """不正な設定では ConfigurationError"""
        with self.assertRaises(ConfigurationError):
            AuthInstance({"providers": ["google.com"], "redirectURL": "x"}, storage=self.storage)

    async def test_fresh_instance_notifies_absent_credential(self):
        auth = self._auth()
        received = []
        auth.subscribe(received.append)
        self.assertEqual(received, [None])
        self.assertIsNone(auth.current_user)
        self.assertIsNone(auth.restore_task)
        self.assertEqual(auth.flow_state, FlowState.IDLE)
        self.assertEqual(auth.name, "default")

    async def test_restores_stored_credential_and_refreshes_profile(self):
        """保存済みの資格情報を読み込み、プロフィールを再取得すること"""
        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now + 600))
        auth = self._auth()

        received = []
        auth.subscribe(received.append)
        self.assertEqual(auth.current_user.email, "old@example.com")
        self.assertEqual(received, [])

        await auth.restore_task
        self.assertEqual(auth.current_user.email, "user@example.com")
        self.assertEqual(auth.current_user.token_details.id_token, "id-token-0")
        self.assertEqual(self.service.methods(), ["lookup"])
        self.assertEqual(received, [auth.current_user])

    async def test_restore_failure_is_logged(self):
        """復元時のプロフィール取得失敗は警告ログに残り、資格情報は保持されること"""
        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now - 1))
        self.service.fail("token", "TOKEN_EXPIRED")
        with self.assertLogs("kagi.auth.instance", level="WARNING") as logs:
            auth = self._auth()
            with self.assertRaises(TokenRefreshError):
                await auth.restore_task
        self.assertIn("TOKEN_EXPIRED", "\n".join(logs.output))
        self.assertEqual(auth.current_user.email, "old@example.com")

    def test_restore_without_running_loop(self):
        """イベントループが無い場合は復元処理を予約しないこと"""
        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now + 600))
        auth = self._auth()
        self.assertIsNone(auth.restore_task)
        self.assertEqual(auth.current_user.user_id, "uid-1")

    async def test_instances_are_namespaced(self):
        """name が異なるインスタンスは別々に保存されること"""
        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now + 600))
        other = self._auth(dict(CONFIG, name="secondary"))
        self.assertIsNone(other.current_user)

    def test_default_collaborators(self):
        """未指定のストレージ・ナビゲータ・クライアントは既定実装になること"""
        with patch("kagi.storage.keyring_store.keyring") as mock_keyring:
            mock_keyring.get_password.return_value = None
            auth = AuthInstance(CONFIG)
        self.assertIsNone(auth.current_user)
        mock_keyring.get_password.assert_called_once_with("kagi", STORAGE_KEY)


class TestAuthInstanceOperations(AuthInstanceTestBase):
    async def test_sign_out_clears_durable_state(self):
        """サインアウト後は永続ストアから消え、再構築時も未認証になること"""
        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now + 600))
        auth = self._auth()
        await auth.restore_task
        received = []
        auth.subscribe(received.append)

        auth.sign_out()

        self.assertEqual(received, [None])
        self.assertIsNone(auth.current_user)
        self.assertIsNone(self.storage.durable.get(STORAGE_KEY))

        reloaded = self._auth()
        after_reload = []
        reloaded.subscribe(after_reload.append)
        self.assertEqual(after_reload, [None])

    async def test_get_id_token(self):
        auth = self._auth()
        self.assertIsNone(await auth.get_id_token())

        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now + 600))
        auth = self._auth()
        await auth.restore_task
        self.assertEqual(await auth.get_id_token(), "id-token-0")

        self.clock.advance(601)
        self.assertEqual(await auth.get_id_token(), "id-token-r1")
        self.assertEqual(self.service.count("token"), 1)

    async def test_refresh_failure_keeps_user_signed_in(self):
        """更新失敗は伝播するが自動サインアウトはしないこと"""
        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now + 600))
        auth = self._auth()
        await auth.restore_task
        self.clock.advance(601)
        self.service.fail("token", "TOKEN_EXPIRED")

        with self.assertRaises(TokenRefreshError):
            await auth.get_id_token()
        self.assertIsNotNone(auth.current_user)
        self.assertIsNotNone(self.storage.durable.get(STORAGE_KEY))

    async def test_refresh_profile(self):
        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now + 600))
        auth = self._auth()
        await auth.restore_task
        self.service.profile["displayName"] = "Renamed"
        credential = await auth.refresh_profile()
        self.assertEqual(credential.display_name, "Renamed")
        self.assertEqual(auth.current_user, credential)

    async def test_restore_does_not_overwrite_new_sign_in(self):
        """復元中のプロフィール取得が、後から完了したサインインを上書きしないこと"""
        self.storage.durable.set(STORAGE_KEY, _stored_record(self.clock.now + 600))
        self.service.profiles_by_token["id-token-0"] = {"localId": "old-uid", "email": "old@example.com"}
        self.service.lookup_delays["id-token-0"] = 0.05
        self.storage.ephemeral.set(SESSION_KEY, "session-1")
        self.navigator.arrive(RETURN_URL)

        auth = self._auth()
        received = []
        auth.subscribe(received.append)
        await asyncio.sleep(0)

        await auth.handle_post_sign_in_redirect()
        await auth.restore_task

        self.assertEqual(auth.current_user.user_id, "uid-1")
        self.assertEqual(auth.current_user.token_details.id_token, "id-token-1")
        stored = json.loads(self.storage.durable.get(STORAGE_KEY))
        self.assertEqual(stored["localId"], "uid-1")
        self.assertEqual(stored["tokenDetails"]["idToken"], "id-token-1")
        self.assertEqual([c.user_id for c in received], ["uid-1"])

    async def test_async_context_manager(self):
        """自前で生成したクライアントだけを閉じること"""
        async with self._auth() as auth:
            self.assertIsInstance(auth, AuthInstance)
        self.assertFalse(self.client._http_client.is_closed)


if __name__ == "__main__":
    unittest.main()
