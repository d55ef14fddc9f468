"""系统更新任务处理器"""

import json
from typing import Optional

from services.dispatcher import HandlerRegistry
from services.system import SystemService


class SystemHandlers:

    def __init__(self, system: SystemService):
        self._system = system

    def register(self, registry: HandlerRegistry):
        registry.add("check_updates", self.check_updates)
        registry.add("apply_updates", self.apply_updates)

    async def check_updates(self, _args=None) -> Optional[str]:
        targets = await self._system.check_updates()
        return json.dumps(targets, ensure_ascii=False)

    async def apply_updates(self, _args=None) -> Optional[str]:
        await self._system.apply_updates()
        return "OK"
