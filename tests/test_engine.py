import pytest

from dotnet_docker.engine import CONTAINER_ADDRESS_FORMAT
from dotnet_docker.engine import SERVER_OS_FORMAT
from dotnet_docker.engine import EngineCommand
from dotnet_docker.engine import ResourceKind
from dotnet_docker.engine import Subcommand
from dotnet_docker.engine import container_host_port_format


def test_build_command():
    cmd = EngineCommand.build(
        "app:latest",
        "tests/projects/Dockerfile",
        "mcr.microsoft.com/dotnet/sdk:9.0-noble-amd64",
        ["runtime_image=mcr.microsoft.com/dotnet/runtime:9.0-noble-amd64"],
    )

    assert cmd.to_args() == [
        "build",
        "-t",
        "app:latest",
        "--build-arg",
        "base_image=mcr.microsoft.com/dotnet/sdk:9.0-noble-amd64",
        "--build-arg",
        "runtime_image=mcr.microsoft.com/dotnet/runtime:9.0-noble-amd64",
        "-f",
        "tests/projects/Dockerfile",
        ".",
    ]


def test_run_command_defaults():
    assert EngineCommand.run("img", "ctr", ["printenv"]).to_args() == [
        "run",
        "--rm",
        "--name",
        "ctr",
        "-p",
        "80",
        "img",
        "printenv",
    ]


def test_run_command_with_all_options():
    cmd = EngineCommand.run(
        "img",
        "ctr",
        ["dotnet", "app.dll", "--some arg"],
        volume="vol:/sandbox",
        user="ContainerAdministrator",
        detach=True,
        publish_ports=("8080", "443"),
    )

    assert cmd.to_args() == [
        "run",
        "--rm",
        "--name",
        "ctr",
        "-v",
        "vol:/sandbox",
        "-u",
        "ContainerAdministrator",
        "-d",
        "-t",
        "-p",
        "8080",
        "-p",
        "443",
        "img",
        "dotnet",
        "app.dll",
        "--some arg",
    ]


def test_run_command_without_ports():
    assert "-p" not in EngineCommand.run("img", "ctr", publish_ports=()).to_args()


@pytest.mark.parametrize(
    "kind,expected",
    [
        (ResourceKind.IMAGE, ["image", "rm", "-f", "foo"]),
        (ResourceKind.CONTAINER, ["container", "rm", "-f", "foo"]),
        (ResourceKind.VOLUME, ["volume", "rm", "-f", "foo"]),
    ],
)
def test_remove_command(kind: ResourceKind, expected: list[str]):
    assert EngineCommand.remove(kind, "foo").to_args() == expected


def test_list_quiet_command():
    assert EngineCommand.list_quiet(
        ResourceKind.CONTAINER, "-f", "name=foo"
    ).to_args() == ["container", "ls", "-q", "-f", "name=foo"]


def test_inspect_and_version_commands():
    assert EngineCommand.inspect(CONTAINER_ADDRESS_FORMAT, "ctr").to_args() == [
        "inspect",
        "-f",
        "{{range .NetworkSettings.Networks}}{{.IPAddress}}{{end}}",
        "ctr",
    ]
    assert EngineCommand.version().to_args() == ["version", "-f", SERVER_OS_FORMAT]
    assert EngineCommand.logs("ctr").to_args() == ["logs", "ctr"]


def test_host_port_format():
    assert (
        container_host_port_format(8080)
        == '{{(index (index .NetworkSettings.Ports "8080/tcp") 0).HostPort}}'
    )


def test_str_quotes_arguments():
    cmd = EngineCommand.run("img", "ctr", ["echo", "hello world"], publish_ports=())

    assert str(cmd) == "run --rm --name ctr img echo 'hello world'"
    assert str(Subcommand.IMAGE_RM) == "image rm"


def test_login_command():
    assert EngineCommand.login("myregistry.azurecr.io", "bot").to_args() == [
        "login",
        "-u",
        "bot",
        "--password-stdin",
        "myregistry.azurecr.io",
    ]
    assert EngineCommand.login("", "bot").to_args() == [
        "login",
        "-u",
        "bot",
        "--password-stdin",
    ]
