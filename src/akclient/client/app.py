# 组装各组件; 同一进程内只需要一个 ClientApp
import logging
from typing import Dict, Optional
from requests.adapters import BaseAdapter

from akclient.core.config import Settings, get_settings
from akclient.core.models import ServerProfile
from akclient.client.gateway import RequestGateway
from akclient.client.preferences import Preferences
from akclient.client.profile_store import ACTIVE_CHANGED, ProfileStore
from akclient.client.session import AuthSession
from akclient.client.transport import TransportManager

logger = logging.getLogger(__name__)


class ClientApp:
    def __init__(
        self,
        settings: Optional[Settings] = None,
        mounts: Optional[Dict[str, BaseAdapter]] = None,
    ):
        self.settings = settings or get_settings()
        self.preferences = Preferences(self.settings.DATA_DIR)
        self.transport = TransportManager(self.preferences, self.settings, mounts=mounts)
        self.gateway = RequestGateway(self.transport)
        self.auth = AuthSession(self.gateway, self.transport)

        # 迁移必须先于任何依赖档案的操作
        self.profiles = ProfileStore(self.preferences, self.transport)
        self.profiles.migrate_legacy_single_server()
        self.profiles.subscribe(self._on_profile_event)

    def _on_profile_event(self, event: str, profile: Optional[ServerProfile]):
        if event == ACTIVE_CHANGED:
            self.auth.handle_profile_switch()

    def switch_server(self, profile: ServerProfile) -> bool:
        """Activate ``profile`` and report whether it answered the health probe.

        The switch and the logout happen even when the server is unreachable.
        """
        self.profiles.switch_to(profile)
        reachable = self.transport.test_connection(profile.url)
        self.profiles.set_server_status(profile.id, reachable)
        if not reachable:
            logger.warning("Server %r did not answer the health check", profile.name)
        return reachable
