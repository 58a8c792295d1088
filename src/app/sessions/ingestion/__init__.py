"""Speaker-channel ingestion: transcription, normalization, segment storage."""
