"""External service clients: Veo generation, Gemini transcription, GCS storage."""
