"""
Card generator state transitions.

The generator screen is modelled as an immutable AppState; each user action
is a pure function returning the next state.
"""
from dataclasses import replace
from typing import Optional

from domain.errors import ExportBusyError
from domain.models import AppState, CardConfig, ImageResource
from services.handles import normalize_handle
from services.layout_engine import compute_card_layout

EXPORT_FAILED_MESSAGE = "Export failed."
INVALID_UPLOAD_MESSAGE = "Only PNG, JPG, JPEG files are allowed."


def select_profile_image(state: AppState, resource: ImageResource) -> AppState:
    """Replace the profile photo; the previous resource is simply dropped."""
    return replace(state, card=replace(state.card, profile_image=resource), message=None)


def reject_profile_image(state: AppState, message: str = INVALID_UPLOAD_MESSAGE) -> AppState:
    """Keep the current card and surface why the selection was refused."""
    return replace(state, message=message)


def set_twitter_handle(state: AppState, raw: str) -> AppState:
    return replace(state, card=replace(state.card, twitter_handle=normalize_handle(raw)))


def set_discord_handle(state: AppState, raw: str) -> AppState:
    return replace(state, card=replace(state.card, discord_handle=normalize_handle(raw)))


def set_badge_label(state: AppState, raw: str) -> AppState:
    # Badge text is kept as typed; the layout trims it
    return replace(state, card=replace(state.card, badge_label=raw or ""))


def clear_card(state: AppState) -> AppState:
    return replace(state, card=CardConfig(), message=None)


def can_export(state: AppState) -> bool:
    return compute_card_layout(state.card).ready and not state.export_in_flight


def begin_export(state: AppState) -> AppState:
    """Mark an export as started; a second concurrent export is refused."""
    if state.export_in_flight:
        raise ExportBusyError("An export is already running for this card")
    return replace(state, export_in_flight=True, message=None)


def finish_export(state: AppState, error: Optional[BaseException] = None) -> AppState:
    message = EXPORT_FAILED_MESSAGE if error is not None else None
    return replace(state, export_in_flight=False, message=message)
