"""
Cattle Breed Recognition API — authentication, user/prediction records and
image classification forwarding.

Entry point: app/main.py → run with `uvicorn app.main:app --reload`
"""
