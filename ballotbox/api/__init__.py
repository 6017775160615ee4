"""
Ballot box HTTP service.

- auth: login gates and session tokens
- coordinator: the exactly-once vote transaction
- results: ranked aggregation
- registration: voter sign-up
- main: FastAPI application
"""
