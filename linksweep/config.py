import yaml
import os
from jinja2 import Environment
from munch import DefaultMunch


class ExprLoader(yaml.FullLoader):
    def __init__(self, stream):
        super().__init__(stream)
        self.add_constructor(tag="!eval", constructor=self.evaluate)

    @staticmethod
    def evaluate(loader, node):
        expr = loader.construct_scalar(node)

        try:
            val = eval(expr)
        except (ValueError, TypeError):
            return expr

        return val


CONFIGURATION_FILE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "configuration.yml")


def load_settings(path=CONFIGURATION_FILE, **overrides):
    with open(path, "r") as f:
        config_str = Environment().from_string(f.read()).render()
    _settings = yaml.load(config_str, ExprLoader)
    _settings.update(overrides)
    return DefaultMunch.fromDict(_settings)  # dict -> object


settings = load_settings()
