from typing import Optional


class ClaimsEngineError(Exception):
    pass


class StoreError(ClaimsEngineError):
    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause


class DocumentNotFoundError(StoreError, KeyError):
    def __init__(self, collection: str, doc_id: str):
        super().__init__(f"Document {collection}/{doc_id} not found")
        self.collection = collection
        self.doc_id = doc_id

    def __str__(self) -> str:
        return self.args[0]


class ConcurrentModificationError(StoreError):
    def __init__(self, collection: str, doc_id: str, expected_version: int, actual_version: Optional[int]):
        super().__init__(
            f"{collection}/{doc_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
        self.collection = collection
        self.doc_id = doc_id
        self.expected_version = expected_version
        self.actual_version = actual_version


class WorkflowNotFoundError(ClaimsEngineError, LookupError):
    pass


class ApprovalChainNotFoundError(ClaimsEngineError, LookupError):
    pass


class InvalidWorkflowError(ClaimsEngineError, ValueError):
    pass


class InvalidTransitionError(ClaimsEngineError, ValueError):
    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")
        self.entity = entity
        self.current = current
        self.target = target


class ClaimValidationError(ClaimsEngineError, ValueError):
    pass
