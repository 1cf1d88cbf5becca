"""Async client toolkit: API wrapper, chat room session, unread tracker, settlement poller."""
