from mycoach import create_app
from mycoach.config import load_config
from mycoach.utils.log_config import setup_logging


config = load_config()
setup_logging(config.log_level)
app = create_app(config)


if __name__ == "__main__":
    app.run(debug=config.debug)
