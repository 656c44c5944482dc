from typing import Optional

from flask import Flask

from bastion.artifacts import ArtifactStore
from bastion.config import Config
from bastion.routes import main_bp
from bastion.services.pipeline_service import RunState


def create_app(
    config: Optional[Config] = None,
    artifact_store: Optional[ArtifactStore] = None,
    run_state: Optional[RunState] = None,
) -> Flask:
    config = config or Config()

    app = Flask(__name__)
    app.config.from_object(config)
    config.init_app(app)

    app.extensions["artifact_store"] = artifact_store or ArtifactStore(root_dir=config.ARTIFACT_DIR)
    app.extensions["run_state"] = run_state or RunState()

    app.register_blueprint(main_bp)

    return app
