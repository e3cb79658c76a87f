from procurement.integrations.metadata import ProductMetadata


class FakeMetadataExtractor:
    def __init__(self, metadata: ProductMetadata | None = None, error: Exception | None = None):
        self.metadata = metadata or ProductMetadata()
        self.error = error
        self.calls: list[str] = []

    async def extract_metadata(self, url: str) -> ProductMetadata:
        self.calls.append(url)
        if self.error is not None:
            raise self.error
        return self.metadata
