from .get_user_info import register as register_user_info
from .list_accounts import register as register_list_accounts
from .list_containers import register as register_list_containers


def register_all(mcp):
    register_user_info(mcp)
    register_list_accounts(mcp)
    register_list_containers(mcp)
