from __future__ import annotations

import logging
from datetime import datetime, timezone

from coverage_tower.config_manager import ConfigManager
from coverage_tower.services.engine_context import EngineContext
from coverage_tower.services.filter_service import FilterState
from coverage_tower.services.legend_service import LegendVisibility


class SessionSyncService:
    """Persists the chart's display preferences between sessions."""

    def __init__(
        self,
        *,
        config: ConfigManager | None,
        context: EngineContext,
    ) -> None:
        self._config = config
        self._context = context

    def snapshot(self, state: FilterState) -> dict:
        return {
            "view": state.view,
            "theme": state.theme,
            "annualized": bool(state.annualized),
            "availability_split": bool(state.availability_split),
            "sir_mode": state.sir_mode,
            "legend": self._context.legend.to_dict(),
        }

    def persist(
        self,
        *,
        state: FilterState,
        current_payload: dict | None = None,
        sync_ready: bool = False,
    ) -> tuple[int, dict | None]:
        if self._config is not None:
            sync_version = self._config.save_session_with_version(self.snapshot(state))
        elif isinstance(current_payload, dict):
            try:
                sync_version = int(current_payload.get("sync_version", 0)) + 1
            except (TypeError, ValueError):
                sync_version = 1
        else:
            sync_version = 1

        previous_sync_version = 0
        if isinstance(current_payload, dict):
            try:
                previous_sync_version = int(current_payload.get("sync_version", 0))
            except (TypeError, ValueError):
                previous_sync_version = 0

        if not bool(sync_ready):
            return sync_version, None
        if sync_version <= previous_sync_version:
            return sync_version, None

        publish_message = {
            "sync_version": sync_version,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        return sync_version, publish_message

    def restore(self, service) -> dict:
        """Apply the saved session to ``service`` and return the raw session."""
        if self._config is None:
            return {}
        session = self._config.load_session()
        if not session:
            return {}

        self._context.legend = LegendVisibility.from_dict(session.get("legend"))

        for key, setter in (
            ("view", service.set_view),
            ("theme", service.set_theme),
            ("sir_mode", service.set_sir_mode),
        ):
            value = session.get(key)
            if value in (None, ""):
                continue
            try:
                setter(value)
            except ValueError as exc:
                logging.warning("Ignoring saved session %s=%r: %s", key, value, exc)

        if "annualized" in session:
            service.set_annualized_mode(bool(session.get("annualized")))
        if "availability_split" in session:
            service.set_availability_split(bool(session.get("availability_split")))
        return session
