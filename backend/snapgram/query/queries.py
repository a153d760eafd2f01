"""
Snapgram Backend — Queries & Mutations Facade
===============================================

What:  The single entry point the View Layer calls. Every read goes through
       the QueryClient cache under its QueryKey; every write goes through
       QueryClient.mutate() so its invalidation rules run on success.
Who:   Route handlers (via the `snapgram_queries` singleton).

Reads                           Key
    get_current_user            (GET_CURRENT_USER, session_id)
    get_users                   (GET_USERS, limit)
    get_user_by_id              (GET_USER_BY_ID, user_id)
    get_user_followers          (GET_USER_FOLLOWERS, user_id)
    get_user_following          (GET_USER_FOLLOWING, user_id)
    get_user_posts              (GET_USER_POSTS, user_id)
    get_liked_posts             (GET_LIKED_POSTS, user_id)
    get_saved_posts             (GET_SAVED_POSTS, user_id)
    get_recent_posts            (GET_RECENT_POSTS,)
    get_post_by_id              (GET_POST_BY_ID, post_id)
    search_posts                (SEARCH_POSTS, term)
    get_page                    (GET_POSTS, lat, lon, distance, cursor)
    next_feed_page              infinite feed keyed (GET_POSTS, lat, lon, distance)
"""

import logging
from typing import List, Optional, Tuple

from snapgram.query.client import QueryClient
from snapgram.query.infinite import InfiniteFeed
from snapgram.query.keys import Mutation, QueryKey
from snapgram.schemas.documents import FeedPage, PostDTO, SaveDTO, SessionDTO, UserDTO
from snapgram.services.account_service import AccountService, account_service
from snapgram.services.feed_service import FeedResolver, feed_resolver
from snapgram.services.geo import DistanceFilter
from snapgram.services.post_service import PostService, Upload, post_service
from snapgram.services.social_service import SocialService, social_service

logger = logging.getLogger(__name__)


class SnapgramQueries:
    def __init__(
        self,
        client: QueryClient,
        accounts: AccountService = account_service,
        posts: PostService = post_service,
        social: SocialService = social_service,
        feed: FeedResolver = feed_resolver,
    ):
        self.client = client
        self.accounts = accounts
        self.posts = posts
        self.social = social
        self.feed = feed

    # ══════════════════════════════════════════════════════════════════════
    # Accounts
    # ══════════════════════════════════════════════════════════════════════

    async def create_user_account(
        self,
        name: str,
        username: str,
        email: str,
        password: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> UserDTO:
        async def _write() -> UserDTO:
            return await self.accounts.create_user_account(
                name, username, email, password, latitude, longitude
            )

        # The new user's id is only known afterwards; the rules here do not
        # narrow by it.
        return await self.client.mutate(Mutation.CREATE_USER_ACCOUNT, _write, {"user_id": None})

    async def sign_in(
        self,
        email: str,
        password: str,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        replace_session_id: Optional[str] = None,
    ) -> Tuple[SessionDTO, UserDTO]:
        session, user = await self.accounts.sign_in(
            email, password, latitude, longitude, replace_session_id
        )
        if replace_session_id:
            self.client.drop_feed(replace_session_id)
            self.client.invalidate((QueryKey.GET_CURRENT_USER, replace_session_id))

        async def _done() -> Tuple[SessionDTO, UserDTO]:
            return session, user

        return await self.client.mutate(
            Mutation.SIGN_IN, _done, {"session_id": session.id, "user_id": user.id}
        )

    async def sign_out(self, session: SessionDTO) -> None:
        await self.client.mutate(
            Mutation.SIGN_OUT,
            lambda: self.accounts.sign_out(session.id),
            {"session_id": session.id},
        )
        self.client.drop_feed(session.id)

    async def get_current_user(self, session: SessionDTO) -> UserDTO:
        return await self.client.fetch(
            (QueryKey.GET_CURRENT_USER, session.id),
            lambda: self.accounts.get_current_user(session),
        )

    async def update_user_location(self, user_id: str, latitude: float, longitude: float) -> UserDTO:
        return await self.client.mutate(
            Mutation.UPDATE_USER_LOCATION,
            lambda: self.accounts.update_user_location(user_id, latitude, longitude),
            {"user_id": user_id},
        )

    # ══════════════════════════════════════════════════════════════════════
    # Posts
    # ══════════════════════════════════════════════════════════════════════

    async def create_post(
        self,
        creator_id: str,
        caption: str,
        upload: Upload,
        location: Optional[str] = None,
        tags: Optional[str] = None,
    ) -> PostDTO:
        async def _write() -> PostDTO:
            return await self.posts.create_post(creator_id, caption, upload, location, tags)

        return await self.client.mutate(
            Mutation.CREATE_POST, _write, {"post_id": None, "creator_id": creator_id}
        )

    async def update_post(
        self,
        post_id: str,
        caption: Optional[str] = None,
        location: Optional[str] = None,
        tags: Optional[str] = None,
        upload: Optional[Upload] = None,
    ) -> PostDTO:
        return await self.client.mutate(
            Mutation.UPDATE_POST,
            lambda: self.posts.update_post(post_id, caption, location, tags, upload),
            {"post_id": post_id},
        )

    async def delete_post(self, post_id: str) -> None:
        await self.client.mutate(
            Mutation.DELETE_POST, lambda: self.posts.delete_post(post_id), {"post_id": post_id}
        )

    async def like_post(self, post_id: str, likes: List[str]) -> PostDTO:
        return await self.client.mutate(
            Mutation.LIKE_POST, lambda: self.posts.like_post(post_id, likes), {"post_id": post_id}
        )

    async def save_post(self, post_id: str, user_id: str) -> SaveDTO:
        return await self.client.mutate(
            Mutation.SAVE_POST,
            lambda: self.posts.save_post(post_id, user_id),
            {"post_id": post_id, "user_id": user_id},
        )

    async def delete_saved_post(self, save_id: str) -> None:
        await self.client.mutate(
            Mutation.DELETE_SAVED_POST,
            lambda: self.posts.delete_saved_post(save_id),
            {"save_id": save_id},
        )

    # Short names used by feed consumers
    like = like_post
    save = save_post

    async def get_recent_posts(self) -> List[PostDTO]:
        return await self.client.fetch((QueryKey.GET_RECENT_POSTS,), self.posts.get_recent_posts)

    async def get_post_by_id(self, post_id: str) -> PostDTO:
        return await self.client.fetch(
            (QueryKey.GET_POST_BY_ID, post_id), lambda: self.posts.get_post_by_id(post_id)
        )

    async def search_posts(self, term: str) -> List[PostDTO]:
        term = (term or "").strip()
        return await self.client.fetch(
            (QueryKey.SEARCH_POSTS, term.lower()), lambda: self.posts.search_posts(term)
        )

    async def get_user_posts(self, user_id: str) -> List[PostDTO]:
        return await self.client.fetch(
            (QueryKey.GET_USER_POSTS, user_id), lambda: self.posts.get_user_posts(user_id)
        )

    async def get_liked_posts(self, user_id: str) -> List[PostDTO]:
        return await self.client.fetch(
            (QueryKey.GET_LIKED_POSTS, user_id), lambda: self.posts.get_liked_posts(user_id)
        )

    async def get_saved_posts(self, user_id: str) -> List[SaveDTO]:
        return await self.client.fetch(
            (QueryKey.GET_SAVED_POSTS, user_id), lambda: self.posts.get_saved_posts(user_id)
        )

    # ══════════════════════════════════════════════════════════════════════
    # Users & follow graph
    # ══════════════════════════════════════════════════════════════════════

    async def get_users(self, limit: int = 20) -> List[UserDTO]:
        return await self.client.fetch((QueryKey.GET_USERS, limit), lambda: self.social.get_users(limit))

    async def get_user_by_id(self, user_id: str) -> UserDTO:
        return await self.client.fetch(
            (QueryKey.GET_USER_BY_ID, user_id), lambda: self.social.get_user_by_id(user_id)
        )

    async def get_user_followers(self, user_id: str) -> List[UserDTO]:
        return await self.client.fetch(
            (QueryKey.GET_USER_FOLLOWERS, user_id), lambda: self.social.get_user_followers(user_id)
        )

    async def get_user_following(self, user_id: str) -> List[UserDTO]:
        return await self.client.fetch(
            (QueryKey.GET_USER_FOLLOWING, user_id), lambda: self.social.get_user_following(user_id)
        )

    async def follow(self, follower_id: str, followed_id: str) -> Tuple[UserDTO, UserDTO]:
        return await self.client.mutate(
            Mutation.FOLLOW_USER,
            lambda: self.social.follow_user(follower_id, followed_id),
            {"follower_id": follower_id, "followed_id": followed_id},
        )

    async def unfollow(self, follower_id: str, followed_id: str) -> Tuple[UserDTO, UserDTO]:
        return await self.client.mutate(
            Mutation.UNFOLLOW_USER,
            lambda: self.social.unfollow_user(follower_id, followed_id),
            {"follower_id": follower_id, "followed_id": followed_id},
        )

    # ══════════════════════════════════════════════════════════════════════
    # Feed
    # ══════════════════════════════════════════════════════════════════════

    async def get_page(
        self,
        latitude: Optional[float],
        longitude: Optional[float],
        distance_filter: DistanceFilter,
        cursor: Optional[str] = None,
    ) -> FeedPage:
        """Stateless feed page, cached per (position, distance, cursor)."""
        # Validate before touching the cache so bad input never keys an entry
        self.feed.viewer_from(latitude, longitude)
        return await self.client.fetch(
            (QueryKey.GET_POSTS, latitude, longitude, distance_filter, cursor),
            lambda: self.feed.get_page(latitude, longitude, distance_filter, cursor),
        )

    async def next_feed_page(
        self,
        owner: str,
        latitude: Optional[float],
        longitude: Optional[float],
        distance_filter: DistanceFilter,
    ) -> InfiniteFeed:
        """
        Advance the owner's infinite feed by one page and return the feed.

        Changing position or distance starts a new feed from the newest post.
        """
        self.feed.viewer_from(latitude, longitude)
        feed = self.client.infinite_feed(
            owner,
            (QueryKey.GET_POSTS, latitude, longitude, distance_filter),
            lambda cursor: self.feed.get_page(latitude, longitude, distance_filter, cursor),
        )
        await feed.fetch_next_page()
        return feed

    def has_more(self, owner: str) -> bool:
        feed = self.client.get_feed(owner)
        return feed is not None and feed.has_more


query_client = QueryClient()
snapgram_queries = SnapgramQueries(query_client)
