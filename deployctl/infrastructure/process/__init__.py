from .command_runner import CommandResult, CommandRunner, CommandTimeout

__all__ = ["CommandResult", "CommandRunner", "CommandTimeout"]
