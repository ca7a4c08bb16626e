"""Engine lifecycle: wires up all Steeple components for the API server."""

from __future__ import annotations

import logging

from steeple.auth.identity import IdentityResolver
from steeple.auth.oauth import OAuthService
from steeple.auth.session import HumanSessionProvider, SignedCookieSessionProvider
from steeple.auth.signing import BlobSigner
from steeple.config import Config
from steeple.directory.read_service import ReadService
from steeple.directory.write_service import WriteService
from steeple.events.bus import EventBus, EventPersister
from steeple.rpc.dispatcher import McpDispatcher
from steeple.state.database import Database

logger = logging.getLogger(__name__)

PROTECTED_RESOURCE_PATH = "/.well-known/oauth-protected-resource"


class Engine:
    """Holds all Steeple components. Created during server lifespan."""

    def __init__(
        self,
        config: Config,
        database: Database,
        event_bus: EventBus,
        oauth: OAuthService,
        identity_resolver: IdentityResolver,
        dispatcher: McpDispatcher,
        signer: BlobSigner,
        session_provider: HumanSessionProvider,
    ):
        self.config = config
        self.database = database
        self.event_bus = event_bus
        self.oauth = oauth
        self.identity_resolver = identity_resolver
        self.dispatcher = dispatcher
        self.signer = signer
        self.session_provider = session_provider

    async def shutdown(self) -> None:
        """Graceful cleanup."""
        await self.event_bus.drain(timeout=5)
        await self.database.close()


async def create_engine(
    config: Config,
    *,
    session_provider: HumanSessionProvider | None = None,
) -> Engine:
    """Create and wire all engine components.

    ``session_provider`` replaces the signed-cookie login collaborator;
    tests and local development pass a static one.
    """
    database = Database(str(config.database_path))
    await database.initialize()

    event_bus = EventBus()
    EventPersister(database).attach(event_bus)

    oauth = OAuthService(database, config.oauth, event_bus=event_bus)
    identity_resolver = IdentityResolver(
        oauth,
        resource_metadata_url=f"{config.base_url}{PROTECTED_RESOURCE_PATH}",
        event_bus=event_bus,
    )

    dispatcher = McpDispatcher(
        ReadService(
            database,
            max_limit=config.mcp.max_limit,
            max_offset=config.mcp.max_offset,
        ),
        WriteService(database, event_bus=event_bus),
        config.mcp,
    )

    signer = BlobSigner(config.oauth.state_secret)
    if session_provider is None:
        session_provider = SignedCookieSessionProvider(
            database,
            signer,
            cookie_name=config.oauth.session_cookie,
        )

    logger.info("Engine ready (database=%s)", database.path)
    return Engine(
        config=config,
        database=database,
        event_bus=event_bus,
        oauth=oauth,
        identity_resolver=identity_resolver,
        dispatcher=dispatcher,
        signer=signer,
        session_provider=session_provider,
    )
