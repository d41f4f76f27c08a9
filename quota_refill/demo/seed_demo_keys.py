# quota_refill/demo/seed_demo_keys.py

from datetime import datetime, timezone

from quota_refill.storage.models import Key
from quota_refill.storage.repository import KeyRepository, initialize_schema

initialize_schema()
repository = KeyRepository()

keys = [
    # refills every run while below its amount
    Key(id="key_daily", workspace_id="ws_demo", refill_amount=100, remaining=12),
    Key(id="key_15th", workspace_id="ws_demo", refill_amount=1000, remaining=40, refill_day=15),
    # refilled on the last day of short months
    Key(id="key_31st", workspace_id="ws_demo", refill_amount=500, remaining=5, refill_day=31),
    # already full, never selected
    Key(id="key_full", workspace_id="ws_demo", refill_amount=100, remaining=100),
    Key(id="key_no_policy", workspace_id="ws_demo", remaining=7),
    Key(
        id="key_deleted",
        workspace_id="ws_demo",
        refill_amount=100,
        remaining=0,
        deleted_at=datetime(2024, 1, 1, tzinfo=timezone.utc)
    ),
]

for k in keys:
    repository.insert_key(k)

print("Demo keys inserted")
