from flaketrack import cli
from flaketrack.models import Serializable
from flaketrack.rich import print, print_json


def print_result(result: Serializable) -> None:
    if cli.options.json:
        print_json(data=result.to_dict(), sort_keys=True)
    else:
        print(result)
