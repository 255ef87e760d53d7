"""Session domain services: lifecycle, scoring, rewards, broadcast and timers.

Routes and socket handlers reach these through ``current_app.extensions['arena']``
rather than importing module-level state, keeping transport concerns separated
from the session mechanics.
"""

from dataclasses import dataclass

from .broadcast import Broadcaster
from .lifecycle import LifecycleManager
from .locks import SessionLocks
from .reconciler import AutoEndReconciler
from .rewards import RewardIssuer, build_transport


@dataclass
class ArenaServices:
    broadcaster: Broadcaster
    locks: SessionLocks
    issuer: RewardIssuer
    lifecycle: LifecycleManager
    reconciler: AutoEndReconciler


def build_services(flask_app, socketio) -> ArenaServices:
    cfg = flask_app.config
    broadcaster = Broadcaster(socketio)
    locks = SessionLocks()
    issuer = RewardIssuer(
        build_transport(cfg),
        broadcaster,
        locks,
        token_amount=cfg.get('DEFAULT_TOKEN_AMOUNT', 100),
        max_retries=int(cfg.get('MAX_REWARD_RETRIES', 5)),
    )
    lifecycle = LifecycleManager(
        broadcaster,
        issuer,
        locks,
        broadcast_size=int(cfg.get('LEADERBOARD_BROADCAST_SIZE', 10)),
    )
    reconciler = AutoEndReconciler(
        flask_app,
        lifecycle,
        socketio,
        interval_sec=int(cfg.get('RECONCILE_INTERVAL_SEC', 60)),
    )
    return ArenaServices(broadcaster, locks, issuer, lifecycle, reconciler)
