# WebSocket for a live dashboard: snapshots on change, typed session messages
import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status
from motor.motor_asyncio import AsyncIOMotorDatabase
from pydantic import ValidationError

from policy_application_service.app.dependencies.identity import get_websocket_identity
from policy_application_service.app.dependencies.services import get_optional_change_publisher, get_reconciler
from policy_application_service.app.models import Identity
from policy_application_service.app.service import dashboard
from policy_application_service.app.service.coordinator import (
    CoordinatorHub,
    DashboardViewChanged,
    OpenPolicyRequested,
    ProfileUpdated,
    RefreshRequested,
    SessionCoordinator,
    coordinator_message_adapter,
    get_coordinator_hub,
)
from policy_application_service.app.service.exceptions import BasePolicyApplicationError
from policy_application_service.app.service.notifications import NotificationFanOut
from policy_application_service.app.service.realtime import RealtimeSyncBridge
from policy_application_service.app.service.reconciler import AttachmentReconciler
from policy_application_service.app.service.wizard.sessions import WizardSessionRegistry, get_wizard_registry, open_application
from policy_application_service.infrastructure.database.connection import get_db
from policy_application_service.infrastructure.kafka.producer import ChangeFeedPublisher

logger = logging.getLogger(__name__)
router = APIRouter()


class DashboardConnection:
    """One open dashboard: its current view, its coordinator and its realtime binding."""

    def __init__(
        self,
        websocket: WebSocket,
        db: AsyncIOMotorDatabase,
        identity: Identity,
        reconciler: AttachmentReconciler,
        change_publisher: Optional[ChangeFeedPublisher],
        registry: WizardSessionRegistry,
    ):
        self.websocket = websocket
        self.db = db
        self.identity = identity
        self.reconciler = reconciler
        self.change_publisher = change_publisher
        self.registry = registry
        self.view = dashboard.DashboardView.HOME
        self.coordinator = SessionCoordinator(identity.id)
        self.coordinator.register(DashboardViewChanged, self.on_view_changed)
        self.coordinator.register(RefreshRequested, self.on_refresh)
        self.coordinator.register(OpenPolicyRequested, self.on_open_policy)
        change_feed = getattr(websocket.app.state, "change_feed", None)
        self.bridge = RealtimeSyncBridge(change_feed) if change_feed is not None else None

    def bind(self):
        if self.bridge is None:
            logger.warning("Change feed not running; dashboard will refresh only on request.")
            return
        self.bridge.bind(self.identity.id, self.view, self.send_snapshot)

    async def send_snapshot(self):
        snapshot = await dashboard.build_snapshot(self.db, self.identity, self.view)
        await self.websocket.send_json({"type": "snapshot", **snapshot.model_dump(mode="json")})

    async def send_error(self, detail: str):
        await self.websocket.send_json({"type": "error", "detail": detail})

    async def on_view_changed(self, message: DashboardViewChanged):
        self.view = message.view
        self.bind()
        await self.send_snapshot()

    async def on_refresh(self, message: RefreshRequested):
        await self.send_snapshot()

    async def on_open_policy(self, message: OpenPolicyRequested):
        try:
            policy_id = message.policy_id
            if message.notification_id:
                policy_id = await NotificationFanOut(self.db).resolve_deep_link(self.identity, message.notification_id)
            controller = await open_application(
                self.db, self.identity, self.reconciler, self.change_publisher,
                client_identifier=policy_id,
                start_at_summary=True,
            )
        except BasePolicyApplicationError as e:
            await self.send_error(str(e))
            return
        session_id = self.registry.register(controller)
        await self.websocket.send_json({
            "type": "policy_opened",
            "session_id": session_id,
            "wizard": controller.snapshot().model_dump(mode="json"),
        })

    async def on_profile_updated(self, message: ProfileUpdated):
        await self.websocket.send_json({"type": "profile_updated", "profile": message.profile.model_dump(mode="json")})

    def close(self):
        if self.bridge is not None:
            self.bridge.unbind()


@router.websocket("/ws/dashboard")
async def dashboard_websocket(
    websocket: WebSocket,
    identity: Optional[Identity] = Depends(get_websocket_identity),
    db: AsyncIOMotorDatabase = Depends(get_db),
    reconciler: AttachmentReconciler = Depends(get_reconciler),
    change_publisher: Optional[ChangeFeedPublisher] = Depends(get_optional_change_publisher),
    registry: WizardSessionRegistry = Depends(get_wizard_registry),
    hub: CoordinatorHub = Depends(get_coordinator_hub),
):
    if identity is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    connection = DashboardConnection(websocket, db, identity, reconciler, change_publisher, registry)
    shared_coordinator = hub.get(identity.id)
    unregister_profile = shared_coordinator.register(ProfileUpdated, connection.on_profile_updated)
    logger.info(f"Dashboard connected for {identity.id}.")

    try:
        connection.bind()
        await connection.send_snapshot()
        while True:
            payload = await websocket.receive_json()
            try:
                message = coordinator_message_adapter.validate_python(payload)
            except ValidationError as e:
                await connection.send_error(f"Unrecognised message: {e.errors()[0]['msg'] if e.errors() else e}")
                continue
            await connection.coordinator.dispatch(message)
    except WebSocketDisconnect:
        logger.info(f"Dashboard disconnected for {identity.id}.")
    finally:
        connection.close()
        unregister_profile()
        if shared_coordinator.handler_count(ProfileUpdated) == 0:
            hub.discard(identity.id)
