"""Wire-level protocol pieces: chunk codec, classifier and intent resolver.

- **chunking**: split oversized payloads into frames and reassemble them
- **classifier**: raw bytes -> Structured / DirectQuery / NaturalLanguage
- **intent**: query text -> QueryIntent (operation + asset symbols)
"""
