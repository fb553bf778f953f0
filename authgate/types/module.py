from fastapi import APIRouter


class CoreModule:
    def __init__(
        self,
        root: str,
        tag: str,
        router: APIRouter | None = None,
    ):
        """
        Initialize a new CoreModule object.
        :param root: the root of the module, used to identify it in logs
        :param tag: the tag of the module, used by FastAPI
        :param router: an optional custom APIRouter
        """
        self.root = root
        self.router = router or APIRouter(tags=[tag])
