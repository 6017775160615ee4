"""Integration tests for the ballot box on PostgreSQL.

Repeats the exactly-once and lost-update properties against a real server,
where the voter row lock is taken with SELECT ... FOR UPDATE.

All tests require a reachable PostgreSQL (POSTGRES_TEST_DSN).
"""
