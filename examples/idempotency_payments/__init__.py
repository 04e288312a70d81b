"""
Idempotent Payments — SQLAlchemy example

Structure:
    domain.py   — Domain models (Order, OrderError)
    db.py       — SQLAlchemy models and session factory
    service.py  — Payment service driving the coordinator
    main.py     — Example runner

Run:
    python -m examples.idempotency_payments.main
"""
