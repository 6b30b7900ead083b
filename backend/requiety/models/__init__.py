from requiety.models.workspace import Workspace, Folder
from requiety.models.api_request import APIRequest
from requiety.models.environment import Environment, Variable
from requiety.models.response import Response
from requiety.models.oauth_token import OAuth2Token

__all__ = [
    "Workspace",
    "Folder",
    "APIRequest",
    "Environment",
    "Variable",
    "Response",
    "OAuth2Token",
]
