from celery import Celery

from storeguard import config

SWEEP_INTERVAL_SECONDS = 15 * 60


def get_celery_app(redis_host: str = "", redis_port: int = 0) -> Celery:  # type: ignore[no-any-unimported]
    # Configure Celery (using Redis as both broker and result backend)
    redis_cfg = config.RedisCfg.from_env()
    if redis_host:
        redis_cfg.host = redis_host
    if redis_port:
        redis_cfg.port = redis_port
    redis_cfg.db = "0"
    app = Celery(
        "storeguard",
        broker=redis_cfg.to_url(),
        backend=redis_cfg.to_url(),
        include=["storeguard.entrypoints.celery.tasks"],
    )
    app.conf.task_serializer = "json"
    app.conf.result_serializer = "json"
    app.conf.accept_content = ["application/json"]
    app.conf.beat_schedule = {
        "sweep-expired-security-state": {
            "task": "storeguard.entrypoints.celery.tasks.sweep_expired_security_state",
            "schedule": SWEEP_INTERVAL_SECONDS,
        },
    }
    return app


app = get_celery_app()
