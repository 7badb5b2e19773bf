class ReportError(Exception):
    """Base class for failures that end a report submission."""

    code = "report_error"
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ReportValidationError(ReportError):
    code = "invalid_payload"
    status_code = 400


class ConfigurationError(ReportError):
    code = "configuration_error"


class UnknownMerchandiserError(ConfigurationError):
    code = "unknown_merchandiser"

    def __init__(self, merchandiser: str):
        super().__init__(f"Spreadsheet not found for merchandiser: {merchandiser}")
        self.merchandiser = merchandiser


class TemplateTabNotFoundError(ConfigurationError):
    code = "template_not_found"

    def __init__(self, template_tab: str):
        super().__init__(f'Template tab "{template_tab}" not found')
        self.template_tab = template_tab


class NoItemsMatchedError(ReportError):
    code = "no_items_matched"

    def __init__(self, submitted: int):
        super().__init__("None of the submitted items matched the sheet items.")
        self.submitted = submitted


class StoreError(ReportError):
    code = "store_error"
