"""
Ingestor App - App Store Review Acquisition Saga Step

Responsibilities:
- Subscribe to Redis Pub/Sub channel: pipeline.extract_request
- Extract the App Store bearer token from the app's landing page (once per saga)
- Page through the reviews listing per requested country, in request order
- Back off on rate limiting (bounded exponential, reset after each good page)
- Filter reviews to the requested date window and limit
- Upsert reviews idempotently into SQLite (raw_reviews)
- Publish exactly one completion event per successful saga

Outputs:
- SQLite table: raw_reviews (one row per review id)
- Redis event: channel=pipeline.extract_completed,
  envelope={message_id, type, saga_id, key, occurred_at, meta, payload}
"""
