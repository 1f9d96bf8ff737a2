"""Provider registry — mutable catalog of tool-providers and their lifecycle."""
import asyncio
import logging
import os
import shutil
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from .store import ProviderStore
from .models import ProviderDescriptor, ToolDescriptor

logger = logging.getLogger(__name__)


@dataclass
class InstallResult:
    ok: bool
    message: str = ""
    returncode: Optional[int] = None
    output: str = ""


class ProviderRegistry:
    """Injectable provider catalog.

    Reads are lock-free; every mutation (upsert, enable/disable, remove,
    install, tool refresh) is serialized through one asyncio lock and written
    through to the optional store.
    """

    def __init__(self, store: Optional[ProviderStore] = None, install_timeout: float = 300.0):
        self._providers: Dict[str, ProviderDescriptor] = {}
        self._store = store
        self._lock = asyncio.Lock()
        self._installing: Set[str] = set()
        self.install_timeout = install_timeout

    async def load(self) -> int:
        """Replace the in-memory catalog with the store's contents."""
        if self._store is None:
            return 0
        descriptors = await self._store.load_all()
        async with self._lock:
            self._providers = {d.id: d for d in descriptors}
        logger.info(f"Loaded {len(descriptors)} providers from store")
        return len(descriptors)

    async def _persist(self, descriptor: ProviderDescriptor):
        if self._store is None:
            return
        try:
            await self._store.upsert(descriptor)
        except Exception as e:
            logger.error(f"Failed to save provider {descriptor.id}: {e}", exc_info=True)

    async def upsert(self, descriptor: ProviderDescriptor):
        """Insert or replace by id."""
        async with self._lock:
            replaced = descriptor.id in self._providers
            self._providers[descriptor.id] = descriptor
            await self._persist(descriptor)
        logger.info(f"{'Replaced' if replaced else 'Registered'} provider: {descriptor.id}")

    async def add_if_absent(self, descriptor: ProviderDescriptor) -> bool:
        async with self._lock:
            if descriptor.id in self._providers:
                return False
            self._providers[descriptor.id] = descriptor
            await self._persist(descriptor)
        logger.info(f"Registered provider: {descriptor.id}")
        return True

    def get(self, provider_id: str) -> Optional[ProviderDescriptor]:
        return self._providers.get(provider_id)

    def list(self) -> List[ProviderDescriptor]:
        """All providers, disabled ones included, in registration order."""
        return list(self._providers.values())

    def enabled(self) -> List[ProviderDescriptor]:
        return [p for p in self._providers.values() if p.enabled]

    async def set_enabled(self, provider_id: str, enabled: bool) -> bool:
        """Returns False when the provider does not exist."""
        async with self._lock:
            descriptor = self._providers.get(provider_id)
            if descriptor is None:
                return False
            descriptor.enabled = enabled
            await self._persist(descriptor)
        logger.info(f"Provider {provider_id} {'enabled' if enabled else 'disabled'}")
        return True

    async def update_tools(self, provider_id: str, tools: List[ToolDescriptor]) -> bool:
        """Replace a provider's tool list with a live-introspected one."""
        async with self._lock:
            descriptor = self._providers.get(provider_id)
            if descriptor is None:
                return False
            descriptor.tools = list(tools)
            await self._persist(descriptor)
        logger.info(f"Provider {provider_id}: refreshed {len(tools)} tools")
        return True

    async def remove(self, provider_id: str, delete_files: bool = False) -> bool:
        """Remove from the catalog, optionally deleting the provider's directory.

        File deletion is best-effort; its failure never blocks removal.
        """
        async with self._lock:
            descriptor = self._providers.get(provider_id)
            if descriptor is None:
                return False
            if delete_files and descriptor.filesystem_path:
                await asyncio.to_thread(_delete_provider_dir, descriptor)
            del self._providers[provider_id]
            if self._store is not None:
                try:
                    await self._store.delete(provider_id)
                except Exception as e:
                    logger.error(f"Failed to delete provider {provider_id} from store: {e}", exc_info=True)
        logger.info(f"Removed provider: {provider_id} (delete_files={delete_files})")
        return True

    async def install_dependencies(self, provider_id: str) -> InstallResult:
        """Run the provider's install step in its directory.

        The registry lock only covers resolving the step; the child process runs
        unlocked so other mutations proceed. One install per provider at a time.
        """
        async with self._lock:
            descriptor = self._providers.get(provider_id)
            if descriptor is None:
                return InstallResult(ok=False, message=f"Provider '{provider_id}' not found")
            command = descriptor.effective_install_command()
            directory = descriptor.directory
            if not command or not directory:
                return InstallResult(ok=False, message=f"Provider '{provider_id}' has no install step")
            if not os.path.isdir(directory):
                return InstallResult(ok=False, message=f"Provider directory {directory} does not exist")
            if provider_id in self._installing:
                return InstallResult(ok=False, message=f"Install for provider '{provider_id}' is already running")
            self._installing.add(provider_id)
        try:
            return await self._run_install(provider_id, command, directory)
        finally:
            self._installing.discard(provider_id)

    async def _run_install(self, provider_id: str, command: List[str], directory: str) -> InstallResult:
        logger.info(f"Installing dependencies for {provider_id}: {' '.join(command)} (cwd={directory})")
        try:
            proc = await asyncio.create_subprocess_exec(
                *command,
                cwd=directory,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as e:
            logger.error(f"Install for {provider_id} could not start: {e}")
            return InstallResult(ok=False, message=f"Could not start install: {e}")

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.install_timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.error(f"Install for {provider_id} timed out after {self.install_timeout}s")
            return InstallResult(ok=False, message=f"Install timed out after {self.install_timeout:.0f}s")

        output = (stdout or b"").decode("utf-8", errors="replace")
        if proc.returncode != 0:
            logger.error(f"Install for {provider_id} failed with code {proc.returncode}")
            return InstallResult(ok=False, message=f"Install failed with code {proc.returncode}",
                                 returncode=proc.returncode, output=output)
        logger.info(f"Install for {provider_id} succeeded")
        return InstallResult(ok=True, message="Dependencies installed", returncode=0, output=output)


def _delete_provider_dir(descriptor: ProviderDescriptor):
    directory = descriptor.directory
    if not directory or not os.path.exists(directory):
        return
    protected = {os.path.abspath(os.getcwd()), os.path.abspath(os.sep), os.path.expanduser("~")}
    if os.path.abspath(directory) in protected:
        logger.warning(f"Refusing to delete protected directory {directory} for provider {descriptor.id}")
        return
    try:
        shutil.rmtree(directory)
        logger.info(f"Deleted provider files at {directory}")
    except OSError as e:
        logger.error(f"Failed to delete server files at {directory}: {e}")


def tool_catalog_for_llm(providers: List[ProviderDescriptor]) -> str:
    """Render providers and their tools for an oracle prompt."""
    lines = []
    for provider in providers:
        lines.append(f"Server: {provider.display_name} (ID: {provider.id})")
        lines.append(f"Description: {provider.description}")
        lines.append("Available tools:")
        if not provider.tools:
            lines.append("- (no tools discovered yet)")
        for tool in provider.tools:
            lines.append(f"- {tool.name}: {tool.description}")
            if tool.params:
                lines.append("  Parameters:")
                for p in tool.params:
                    req = "required" if p.required else "optional"
                    lines.append(f"    - {p.name} ({p.type}, {req}): {p.description}")
        lines.append("")
    return "\n".join(lines) if lines else "(no servers available)"
