"""Process entrypoint: ``uvicorn agent_gateway.main:app`` or ``agent-gateway``."""

from agent_gateway.server.app import create_app

app = create_app()


def run():
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8080)


if __name__ == "__main__":
    run()
