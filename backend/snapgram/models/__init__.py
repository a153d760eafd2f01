"""Document models for the accounts, sessions, users, posts and saves collections."""
