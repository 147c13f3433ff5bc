"""
ListenerRegistryの実装

資格情報の変化を購読者へ配信する。
"""
import logging
from typing import Callable, List, Optional, Tuple

from kagi.models import Credential

logger = logging.getLogger(__name__)

Listener = Callable[[Optional[Credential]], None]


class ListenerRegistry:
    """資格情報変更の購読者管理"""

    def __init__(self):
        self._listeners: List[Tuple[object, Listener]] = []

    def subscribe(self, callback: Listener, current: Optional[Credential] = None) -> Callable[[], None]:
        """
        コールバックを登録する。
        現在資格情報が無い場合は、登録直後にNoneで1回呼び出す。

        Args:
            callback: 資格情報（またはNone）を受け取るコールバック
            current: 現在の資格情報

        Returns:
            Callable[[], None]: 登録解除関数（複数回呼んでも安全）
        """
        token = object()
        entry = (token, callback)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)
                logger.debug("Listener unsubscribed (total=%d)", len(self._listeners))

        self._listeners.append(entry)
        logger.debug("Listener subscribed (total=%d)", len(self._listeners))
        if current is None:
            try:
                callback(None)
            except Exception:
                # 解除関数を返せないので登録を取り消す
                unsubscribe()
                raise

        return unsubscribe

    def notify_all(self, credential: Optional[Credential]) -> None:
        """
        登録順に全てのコールバックを呼び出す。
        コールバック内の例外は捕捉せず、変更を起こした呼び出し元へ伝播させる。

        Args:
            credential: 現在の資格情報（サインアウト時はNone）
        """
        # 通知中の購読解除に備えてスナップショットを反復する
        for _, callback in list(self._listeners):
            callback(credential)

    def __len__(self) -> int:
        return len(self._listeners)
