"""
Base class for all ratelimit_operator commands
"""

# Standard
import abc
import argparse


class CmdBase(abc.ABC):
    """A subcommand of the main entrypoint. Children name the subcommand and
    add their own runtime arguments.
    """

    # The subcommand name on the command line
    name: str = None

    def add_subparser(
        self,
        subparsers: argparse._SubParsersAction,
    ) -> argparse.ArgumentParser:
        """Add this command's subparser with its runtime arguments

        Args:
            subparsers (argparse._SubParsersAction): The subparser section for
                the central main parser

        Returns:
            subparser (argparse.ArgumentParser): The configured parser for this
                command
        """
        assert self.name, f"{type(self).__name__} has no command name"
        parser = subparsers.add_parser(self.name, help=self.__doc__)
        self.add_args(parser.add_argument_group("Runtime Configuration"))
        return parser

    @abc.abstractmethod
    def add_args(self, runtime_args: argparse._ArgumentGroup):
        """Add the runtime arguments of this command"""

    @abc.abstractmethod
    def cmd(self, args: argparse.Namespace) -> int:
        """Execute the command with the parsed arguments

        Returns:
            exit_code (int): The exit code of the command
        """
