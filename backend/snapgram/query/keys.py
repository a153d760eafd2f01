"""
Snapgram Backend — Query Keys & Invalidation Table
====================================================

What:  Names of every cached read, names of every mutation, and the
       declarative table of which cached reads each mutation makes stale.
How:   A cache key is a tuple `(QueryKey, *params)`. An invalidation rule
       names a QueryKey and optionally the mutation argument that narrows
       it, so `Invalidation(GET_POST_BY_ID, "post_id")` applied to
       `like_post(post_id="p1")` marks `(GET_POST_BY_ID, "p1")` stale and
       `Invalidation(GET_POSTS)` marks every key starting with GET_POSTS.

The table is checked once at startup by validate_invalidation_table(): a
mutation missing from the table, or a rule naming an argument the mutation
does not take, fails the boot instead of silently leaving data stale.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple


class QueryKey(str, Enum):
    GET_CURRENT_USER = "GET_CURRENT_USER"
    GET_USERS = "GET_USERS"
    GET_USER_BY_ID = "GET_USER_BY_ID"
    GET_USER_FOLLOWERS = "GET_USER_FOLLOWERS"
    GET_USER_FOLLOWING = "GET_USER_FOLLOWING"
    GET_USER_POSTS = "GET_USER_POSTS"
    GET_LIKED_POSTS = "GET_LIKED_POSTS"
    GET_SAVED_POSTS = "GET_SAVED_POSTS"
    GET_RECENT_POSTS = "GET_RECENT_POSTS"
    GET_POST_BY_ID = "GET_POST_BY_ID"
    GET_POSTS = "GET_POSTS"
    SEARCH_POSTS = "SEARCH_POSTS"


class Mutation(str, Enum):
    CREATE_USER_ACCOUNT = "create_user_account"
    SIGN_IN = "sign_in"
    SIGN_OUT = "sign_out"
    UPDATE_USER_LOCATION = "update_user_location"
    CREATE_POST = "create_post"
    UPDATE_POST = "update_post"
    DELETE_POST = "delete_post"
    LIKE_POST = "like_post"
    SAVE_POST = "save_post"
    DELETE_SAVED_POST = "delete_saved_post"
    FOLLOW_USER = "follow_user"
    UNFOLLOW_USER = "unfollow_user"


CacheKey = Tuple[Any, ...]


@dataclass(frozen=True)
class Invalidation:
    query: QueryKey
    param: Optional[str] = None

    def prefix(self, params: Mapping[str, Any]) -> CacheKey:
        if self.param is None:
            return (self.query,)
        return (self.query, params[self.param])

    def __str__(self) -> str:
        return f"{self.query.value}:<{self.param}>" if self.param else self.query.value


# Arguments each mutation reports to the cache when it succeeds
MUTATION_PARAMS: Dict[Mutation, FrozenSet[str]] = {
    Mutation.CREATE_USER_ACCOUNT: frozenset({"user_id"}),
    Mutation.SIGN_IN: frozenset({"session_id", "user_id"}),
    Mutation.SIGN_OUT: frozenset({"session_id"}),
    Mutation.UPDATE_USER_LOCATION: frozenset({"user_id"}),
    Mutation.CREATE_POST: frozenset({"post_id", "creator_id"}),
    Mutation.UPDATE_POST: frozenset({"post_id"}),
    Mutation.DELETE_POST: frozenset({"post_id"}),
    Mutation.LIKE_POST: frozenset({"post_id"}),
    Mutation.SAVE_POST: frozenset({"post_id", "user_id"}),
    Mutation.DELETE_SAVED_POST: frozenset({"save_id"}),
    Mutation.FOLLOW_USER: frozenset({"follower_id", "followed_id"}),
    Mutation.UNFOLLOW_USER: frozenset({"follower_id", "followed_id"}),
}

_POST_LISTS = (Invalidation(QueryKey.GET_RECENT_POSTS), Invalidation(QueryKey.GET_POSTS))

_SAVE_RULES = _POST_LISTS + (
    Invalidation(QueryKey.GET_CURRENT_USER),
    Invalidation(QueryKey.GET_SAVED_POSTS),
)

_FOLLOW_RULES = (
    Invalidation(QueryKey.GET_USER_BY_ID),
    Invalidation(QueryKey.GET_USER_FOLLOWERS),
    Invalidation(QueryKey.GET_USER_FOLLOWING),
    Invalidation(QueryKey.GET_CURRENT_USER),
)

_LOCATION_RULES = (
    Invalidation(QueryKey.GET_CURRENT_USER),
    Invalidation(QueryKey.GET_USER_BY_ID),
    Invalidation(QueryKey.GET_POSTS),
)

INVALIDATIONS: Dict[Mutation, Tuple[Invalidation, ...]] = {
    Mutation.CREATE_USER_ACCOUNT: (Invalidation(QueryKey.GET_USERS),),
    # Signing in with a position moves the user, like update_user_location
    Mutation.SIGN_IN: _LOCATION_RULES,
    Mutation.SIGN_OUT: (Invalidation(QueryKey.GET_CURRENT_USER, "session_id"),),
    Mutation.UPDATE_USER_LOCATION: _LOCATION_RULES,
    Mutation.CREATE_POST: _POST_LISTS + (Invalidation(QueryKey.GET_USER_POSTS),),
    Mutation.UPDATE_POST: (Invalidation(QueryKey.GET_POST_BY_ID, "post_id"),) + _POST_LISTS,
    Mutation.DELETE_POST: (
        (Invalidation(QueryKey.GET_POST_BY_ID, "post_id"),)
        + _POST_LISTS
        + (Invalidation(QueryKey.GET_USER_POSTS),)
    ),
    Mutation.LIKE_POST: (
        (Invalidation(QueryKey.GET_POST_BY_ID, "post_id"),)
        + _POST_LISTS
        + (Invalidation(QueryKey.GET_CURRENT_USER), Invalidation(QueryKey.GET_LIKED_POSTS))
    ),
    Mutation.SAVE_POST: _SAVE_RULES,
    Mutation.DELETE_SAVED_POST: _SAVE_RULES,
    Mutation.FOLLOW_USER: _FOLLOW_RULES,
    Mutation.UNFOLLOW_USER: _FOLLOW_RULES,
}


def validate_invalidation_table(
    table: Mapping[Mutation, Tuple[Invalidation, ...]] = INVALIDATIONS,
    params: Mapping[Mutation, FrozenSet[str]] = MUTATION_PARAMS,
) -> None:
    """
    Check the invalidation table for gaps.

    Raises ValueError listing every problem: mutations with no entry,
    rules that are not Invalidation instances or name an unknown query,
    and rules narrowed by an argument the mutation does not declare.
    """
    errors = []
    for mutation in Mutation:
        if mutation not in table:
            errors.append(f"{mutation.value}: no invalidation entry")
        if mutation not in params:
            errors.append(f"{mutation.value}: no declared parameters")

    for mutation, rules in table.items():
        declared = params.get(mutation, frozenset())
        for rule in rules:
            if not isinstance(rule, Invalidation) or not isinstance(rule.query, QueryKey):
                errors.append(f"{mutation}: invalid rule {rule!r}")
                continue
            if rule.param is not None and rule.param not in declared:
                errors.append(
                    f"{mutation.value}: rule {rule} uses undeclared parameter '{rule.param}'"
                )

    if errors:
        raise ValueError(
            "Invalidation table validation failed:\n" + "\n".join(f"  - {e}" for e in errors)
        )


def format_key(key: CacheKey) -> str:
    """(GET_POST_BY_ID, "p1") → "GET_POST_BY_ID:p1" """
    return ":".join(part.value if isinstance(part, Enum) else str(part) for part in key)
