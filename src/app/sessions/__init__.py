"""Post-session transcript intelligence pipeline.

Turns per-speaker recorded audio into a stored transcript, a safety
assessment, a generated summary, and deduplicated participant notifications.

Components:
- ingestion: transcription provider client, normalizer, TranscriptIngestor
- aggregator: TranscriptAggregator (chronological transcript text)
- safety: rule-based detectors and the fail-open ContentSafetyAnalyzer
- summaries: SummarizationEngine and NotificationDispatcher
- lifecycle: SessionLifecycle finalization state machine
- pipeline: SessionPipeline orchestrating the stages for a finalized session
- repository: SessionPipelineRepository (SQLAlchemy async persistence)
"""
