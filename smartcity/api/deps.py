"""Shared dependencies: the running feed client, day store and read-side selector."""
from typing import Annotated

from fastapi import Depends, Request

from smartcity.services.day_store import BeanieDayStore
from smartcity.services.feed_client import FeedClient
from smartcity.services.read_side import ReadSideSelector


def get_feed_client(request: Request) -> FeedClient:
    return request.app.state.feed_client


def get_day_store(request: Request) -> BeanieDayStore:
    return request.app.state.day_store


def get_selector(
    feed: Annotated[FeedClient, Depends(get_feed_client)],
    store: Annotated[BeanieDayStore, Depends(get_day_store)],
) -> ReadSideSelector:
    return ReadSideSelector(feed.buffer, store)


# Type aliases for route injection
LiveFeed = Annotated[FeedClient, Depends(get_feed_client)]
DayStore = Annotated[BeanieDayStore, Depends(get_day_store)]
Selector = Annotated[ReadSideSelector, Depends(get_selector)]
