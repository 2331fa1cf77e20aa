import logging

import werkzeug
from werkzeug.serving import make_server

from lambdawatch.functions.invoke_api import InvokeEndpoints
from lambdawatch.functions.registry import FunctionRegistry
from lambdawatch.functions.router import InvocationRouter
from lambdawatch.functions.runtime_api import RuntimeApiEndpoints
from lambdawatch.http import Router
from lambdawatch.http.dispatcher import handler_dispatcher
from lambdawatch.utils.serving import Server

LOG = logging.getLogger(__name__)


def create_router(registry: FunctionRegistry, invocation_router: InvocationRouter) -> Router:
    router = Router(dispatcher=handler_dispatcher())
    router.add(RuntimeApiEndpoints(registry))
    router.add(InvokeEndpoints(invocation_router, registry))
    return router


class FunctionServer(Server):
    """
    Serves the runtime API for function processes and the invoke entry point on the same port. The socket is
    bound when the server is created, so a port that is already in use fails immediately.
    """

    def __init__(self, router: Router, port: int, host: str = "localhost") -> None:
        super().__init__(port, host)
        self.router = router

        @werkzeug.Request.application
        def app(request: werkzeug.Request) -> werkzeug.Response:
            return self.router.dispatch(request)

        self.server = make_server(self.host, self.port, app=app, threaded=True)
        # the port may have been chosen by the system
        self._port = self.server.port

    def do_run(self):
        try:
            LOG.debug("starting function server on %s", self.url)
            return self.server.serve_forever()
        finally:
            LOG.debug("function server on %s returning", self.url)

    def do_shutdown(self):
        self.server.shutdown()
        self.server.server_close()
