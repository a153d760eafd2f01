"""
Snapgram Backend — Social Graph Service
=========================================

What:  User directory reads and the follow graph (follow / unfollow,
       followers / following lists).
How:   followers and following are id arrays stored on each user document.
       Follow and unfollow are read-modify-write sequences over two
       documents:

           1. read follower and followed
           2. write followed.followers
           3. write follower.following

       Two concurrent follow/unfollow calls on the same pair can interleave
       between steps 1 and 3 and lose an update; the document store has no
       atomic set-add. When step 3 fails, step 2 is reverted before
       PartialWriteError is raised.
"""

import logging
from typing import List, Tuple

from snapgram.exceptions import PartialWriteError, SnapgramError, ValidationError
from snapgram.schemas.documents import UserDTO
from snapgram.services.backend_gateway import BackendGateway, backend_gateway

logger = logging.getLogger(__name__)

DEFAULT_USERS_LIMIT = 20


class SocialService:
    def __init__(self, gateway: BackendGateway = backend_gateway):
        self.gateway = gateway

    async def get_users(self, limit: int = DEFAULT_USERS_LIMIT) -> List[UserDTO]:
        return await self.gateway.list_users(limit=limit)

    async def get_user_by_id(self, user_id: str) -> UserDTO:
        return await self.gateway.get_user(user_id)

    async def get_user_followers(self, user_id: str) -> List[UserDTO]:
        user = await self.gateway.get_user(user_id)
        return await self.gateway.list_users_by_ids(user.followers)

    async def get_user_following(self, user_id: str) -> List[UserDTO]:
        user = await self.gateway.get_user(user_id)
        return await self.gateway.list_users_by_ids(user.following)

    async def follow_user(self, follower_id: str, followed_id: str) -> Tuple[UserDTO, UserDTO]:
        """
        Make `follower_id` follow `followed_id`. Following twice is a no-op.

        Returns the updated (follower, followed) documents.
        """
        if follower_id == followed_id:
            raise ValidationError(message="You cannot follow yourself.", field="user_id")

        follower = await self.gateway.get_user(follower_id)
        followed = await self.gateway.get_user(followed_id)

        followers = followed.followers
        if follower_id not in followers:
            followers = followers + [follower_id]
        following = follower.following
        if followed_id not in following:
            following = following + [followed_id]

        return await self._write_pair(follower, followed, following, followers, "follow")

    async def unfollow_user(self, follower_id: str, followed_id: str) -> Tuple[UserDTO, UserDTO]:
        if follower_id == followed_id:
            raise ValidationError(message="You cannot unfollow yourself.", field="user_id")

        follower = await self.gateway.get_user(follower_id)
        followed = await self.gateway.get_user(followed_id)

        followers = [uid for uid in followed.followers if uid != follower_id]
        following = [uid for uid in follower.following if uid != followed_id]

        return await self._write_pair(follower, followed, following, followers, "unfollow")

    async def _write_pair(
        self,
        follower: UserDTO,
        followed: UserDTO,
        following: List[str],
        followers: List[str],
        action: str,
    ) -> Tuple[UserDTO, UserDTO]:
        updated_followed = await self.gateway.update_user(followed.id, followers=followers)
        try:
            updated_follower = await self.gateway.update_user(follower.id, following=following)
        except SnapgramError as e:
            logger.error(
                "%s %s→%s: following list write failed, reverting followers: %s",
                action, follower.id, followed.id, e.message,
            )
            try:
                await self.gateway.update_user(followed.id, followers=followed.followers)
                cleaned_up = True
            except SnapgramError:
                cleaned_up = False
            raise PartialWriteError(
                message=f"Could not {action} this user. Please try again.",
                cleaned_up=cleaned_up,
                context={"follower_id": follower.id, "followed_id": followed.id},
            ) from e

        logger.info("%s: %s → %s", action, follower.id, followed.id)
        return updated_follower, updated_followed


social_service = SocialService()
