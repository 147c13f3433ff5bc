"""ナビゲーション（リダイレクト・現在URL・履歴置換）の抽象化。"""

from __future__ import annotations

from abc import ABC, abstractmethod
import asyncio
from http.server import BaseHTTPRequestHandler, HTTPServer
import logging
import threading
import time
from typing import Any, Optional
from urllib.parse import urlsplit
import webbrowser

logger = logging.getLogger(__name__)

LOOPBACK_HOSTS = frozenset({"localhost", "127.0.0.1"})


class Navigator(ABC):
    """ページ遷移を担うインターフェース。"""

    @abstractmethod
    def redirect(self, url: str) -> None:
        """ページ全体を指定URLへ遷移させる。"""

    @abstractmethod
    def current_url(self) -> str:
        """現在表示中のURLを返す。"""

    @abstractmethod
    def replace_visible_url(self, url: str) -> None:
        """遷移せずに表示中のURLを置き換える（履歴エントリは増やさない）。"""


class MemoryNavigator(Navigator):
    """ブラウザを使わずに遷移履歴を保持するナビゲータ。

    プロバイダからの戻りは ``arrive`` で再現する。
    """

    def __init__(self, url: str = "about:blank") -> None:
        self._history: list[str] = [url]
        self.redirects: list[str] = []

    def redirect(self, url: str) -> None:
        self.redirects.append(url)
        self._history.append(url)

    def current_url(self) -> str:
        return self._history[-1]

    def replace_visible_url(self, url: str) -> None:
        self._history[-1] = url

    def arrive(self, url: str) -> None:
        """外部からのリダイレクトで新しいページに到着したことにする。"""
        self._history.append(url)

    @property
    def history(self) -> list[str]:
        return list(self._history)


class _CallbackState:
    def __init__(self, base_url: str, path: str) -> None:
        self.base_url = base_url
        self.path = path
        self.url: Optional[str] = None


class CallbackHandler(BaseHTTPRequestHandler):
    """プロバイダからの戻りURLを受け取るハンドラ"""

    def do_GET(self) -> None:
        state: Optional[_CallbackState] = getattr(self.server, "callback_state", None)
        if state is None:
            self.send_error(500, "Server configuration error")
            return
        if urlsplit(self.path).path != state.path:
            self.send_error(404, "Not Found")
            return

        state.url = f"{state.base_url}{self.path}"
        self.send_response(200)
        self.send_header("Content-type", "text/html; charset=utf-8")
        self.end_headers()
        self.wfile.write(
            "<html><body><h2>サインイン処理を続行しています。このウィンドウは閉じて構いません。</h2></body></html>".encode(
                "utf-8"
            )
        )

    def log_message(self, format: str, *args: Any) -> None:
        """アクセスログを出さない"""


class WebbrowserNavigator(MemoryNavigator):
    """リダイレクトをシステムのブラウザで開くナビゲータ。

    ``callback_url`` に ``http://localhost:<port>/<path>`` 形式のリダイレクト先を
    指定すると、``redirect`` の時点でそのアドレスに待ち受けサーバーを立て、
    ``wait_for_redirect`` で戻りのURL（認可コード付き）を現在URLとして取り込む。
    ``callback_url`` を指定しない場合、現在URLはブラウザの遷移を反映しないため、
    アプリケーションが戻りのURLを ``arrive`` で渡す必要がある。
    """

    poll_interval = 0.1

    def __init__(
        self,
        url: str = "about:blank",
        callback_url: str | None = None,
        timeout_seconds: float = 180.0,
    ) -> None:
        super().__init__(url)
        self._callback_url = callback_url
        self._timeout_seconds = timeout_seconds
        self._server: HTTPServer | None = None
        self._callback_state: _CallbackState | None = None

    @classmethod
    def for_redirect_url(cls, redirect_url: str) -> WebbrowserNavigator:
        """リダイレクト先がループバックアドレスなら、そこで戻りを待ち受ける構成を返す"""
        if urlsplit(redirect_url).hostname in LOOPBACK_HOSTS:
            return cls(callback_url=redirect_url)
        return cls()

    @property
    def listening_url(self) -> str | None:
        """待ち受け中のコールバックURL（ポート0指定時は割り当て後のポート）"""
        state = self._callback_state
        if state is None:
            return None
        return f"{state.base_url}{state.path}"

    def redirect(self, url: str) -> None:
        if self._callback_url is not None:
            self._start_callback_server(self._callback_url)
        super().redirect(url)
        opened = webbrowser.open(url)
        if not opened:
            logger.warning("ブラウザを起動できませんでした。次のURLを開いてください: %s", url)

    async def wait_for_redirect(self) -> str:
        """プロバイダからの戻りを待ち、戻りのURLを現在URLにして返す。

        Raises:
            RuntimeError: 待ち受けていない場合、またはタイムアウトした場合。
        """

        state = self._callback_state
        if state is None:
            raise RuntimeError("コールバックを待ち受けていません。callback_url を指定して redirect してください。")

        deadline = time.monotonic() + self._timeout_seconds
        try:
            while state.url is None:
                if time.monotonic() > deadline:
                    raise RuntimeError("プロバイダからの戻りを待つ間にタイムアウトしました")
                await asyncio.sleep(self.poll_interval)
        finally:
            self.close()

        self.arrive(state.url)
        return state.url

    def close(self) -> None:
        """待ち受けサーバーを停止する"""
        server = self._server
        if server is None:
            return
        self._server = None
        server.shutdown()
        server.server_close()

    def _start_callback_server(self, callback_url: str) -> None:
        self.close()
        parts = urlsplit(callback_url)
        host = parts.hostname or "localhost"
        server = HTTPServer((host, parts.port or 0), CallbackHandler)
        _, port = server.server_address[:2]

        state = _CallbackState(f"{parts.scheme}://{host}:{port}", parts.path or "/")
        server.callback_state = state  # type: ignore[attr-defined]
        self._server = server
        self._callback_state = state

        thread = threading.Thread(target=server.serve_forever, daemon=True)
        thread.start()
        logger.debug("Listening for the provider redirect on %s", self.listening_url)
