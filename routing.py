"""Routing between the intro, paywall, main, error and loading screens."""

from typing import Optional

from config import FREE_DAY_LIMIT
from models import ErrorRoute, IntroRoute, LoadingRoute, MainRoute, PaywallRoute, RoutingState

DEFAULT_ERROR_MESSAGE = "Something went wrong"


def should_show_paywall(is_subscribed: bool, current_day: int, free_day_limit: int = FREE_DAY_LIMIT) -> bool:
    """Non-subscribers see the paywall once the free days are used up."""
    return not is_subscribed and current_day > free_day_limit


def route(
    has_connected_partner: bool,
    has_seen_intro: bool,
    is_subscribed: bool,
    current_day: int,
    free_day_limit: int = FREE_DAY_LIMIT,
    has_error: bool = False,
    error_message: Optional[str] = None,
    is_loading: bool = False,
) -> RoutingState:
    """Compute the screen to show. The first matching rule wins.

    1. loading
    2. error
    3. intro not yet dismissed (offers partner connection when unpaired)
    4. paywall after the free days
    5. main
    """
    if is_loading:
        return LoadingRoute()

    if has_error:
        return ErrorRoute(message=error_message or DEFAULT_ERROR_MESSAGE)

    if not has_seen_intro:
        return IntroRoute(show_connect=not has_connected_partner)

    if should_show_paywall(is_subscribed, current_day, free_day_limit):
        return PaywallRoute(day=current_day)

    return MainRoute()
