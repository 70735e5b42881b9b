class DataFormatError(ValueError):
    """Raised when an input table cannot be turned into the canonical layout."""

    def __init__(self, dataset: str, message: str):
        self.dataset = dataset
        super().__init__(f"{dataset}: {message}")
