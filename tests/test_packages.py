"""Tests for package tools and repository sources."""

import pytest

from hardn.config import HardnConfig
from hardn.exceptions import PackageInstallPartial
from hardn.packages import PackageManager


@pytest.fixture
def make_manager(make_platform, steward, debian_facts, logger):
    def factory(config=None, facts=None, runner=None, addresses=(), steward_=None):
        platform = make_platform(facts or debian_facts, runner, addresses)
        return PackageManager(config or HardnConfig(), platform, steward_ or steward, logger)

    return factory


def test_apt_installs_missing_and_skips_present(make_manager, runner):
    """Installed packages are skipped; missing ones are installed noninteractively."""
    runner.respond("dpkg-query", "-W", "-f=${Status}", "git", output="install ok installed")
    manager = make_manager(runner=runner)

    report = manager.install_packages(["git", "htop", "git"])

    assert report.skipped == ["git"]
    assert report.installed == ["htop"]
    assert runner.ran("apt-get", "install", "-y", "htop")
    assert not runner.ran("apt-get", "install", "-y", "git")
    env = runner.envs[runner.index("apt-get", "install", "-y", "htop")]
    assert env == {"DEBIAN_FRONTEND": "noninteractive"}


def test_partial_failure_continues(make_manager, runner, read_log):
    """One failing package does not stop the rest of the batch."""
    runner.respond("apt-get", "install", "-y", "nosuchpkg", output="E: Unable to locate package", code=100)
    manager = make_manager(runner=runner)

    with pytest.raises(PackageInstallPartial) as exc_info:
        manager.install_packages(["nosuchpkg", "htop"])

    assert exc_info.value.failed == ["nosuchpkg"]
    assert not exc_info.value.fatal
    assert exc_info.value.report.installed == ["htop"]
    assert "Failed to install nosuchpkg: E: Unable to locate package" in read_log()
    assert "INSTALLED: htop" in read_log()


def test_apk_install(make_manager, runner, alpine_facts):
    """Alpine uses apk info -e and apk add."""
    runner.respond("apk", "info", "-e", code=1)
    runner.respond("apk", "info", "-e", "bash")
    manager = make_manager(facts=alpine_facts, runner=runner)

    report = manager.install_packages(["bash", "sudo"])

    assert report.skipped == ["bash"]
    assert report.installed == ["sudo"]
    assert runner.ran("apk", "add", "sudo")


def test_lab_packages_outside_dmz(make_manager, runner):
    """Hosts outside the DMZ get core, DMZ and LAB sets."""
    config = HardnConfig(
        dmz_subnet="192.168.4",
        linux_core_packages=["git"],
        linux_dmz_packages=["fail2ban"],
        linux_lab_packages=["iperf3"],
    )
    manager = make_manager(config, runner=runner, addresses=["10.0.0.5"])

    report = manager.install_linux_packages()

    assert report.installed == ["git", "fail2ban", "iperf3"]
    assert runner.calls[0] == ["apt-get", "update"]


def test_dmz_host_skips_lab(make_manager, runner):
    """Hosts inside the DMZ subnet do not get LAB packages."""
    config = HardnConfig(
        dmz_subnet="192.168.4",
        linux_core_packages=["git"],
        linux_dmz_packages=["fail2ban"],
        linux_lab_packages=["iperf3"],
    )
    manager = make_manager(config, runner=runner, addresses=["192.168.4.20"])

    report = manager.install_linux_packages()

    assert report.installed == ["git", "fail2ban"]
    assert not runner.ran("apt-get", "install", "-y", "iperf3")


def test_alpine_package_sets(make_manager, runner, alpine_facts):
    """Alpine uses its own package lists."""
    runner.respond("apk", "info", "-e", code=1)
    config = HardnConfig(linux_core_packages=["git"], alpine_core_packages=["bash"])
    manager = make_manager(config, facts=alpine_facts, runner=runner)

    report = manager.install_linux_packages()

    assert report.installed == ["bash"]
    assert runner.calls[0] == ["apk", "update"]


def test_no_packages_configured(make_manager, runner, read_log):
    """Empty package sets do nothing."""
    manager = make_manager(runner=runner)

    manager.install_linux_packages()

    assert runner.calls == []
    assert "No Linux packages configured" in read_log()


def test_python_packages_respect_wsl(make_manager, runner):
    """Non-WSL packages are left out under WSL and pip packages follow."""
    from hardn.config import RuntimeEnvironment

    config = HardnConfig(
        python_packages=["python3-venv"],
        non_wsl_python_packages=["python3-tk"],
        python_pip_packages=["requests"],
    )
    manager = make_manager(config, runner=runner)

    manager.install_python_packages(RuntimeEnvironment(wsl="1"))

    assert runner.ran("apt-get", "install", "-y", "python3-venv")
    assert not runner.ran("apt-get", "install", "-y", "python3-tk")
    assert runner.ran("pip3", "install", "requests")


def test_uv_is_bootstrapped(make_manager, runner):
    """With uv enabled, uv is installed through pip3 when missing."""
    config = HardnConfig(python_pip_packages=["requests"], use_uv_package_manager=True)
    manager = make_manager(config, runner=runner)

    manager.install_python_packages()

    assert runner.calls == [
        ["pip3", "install", "uv"],
        ["uv", "pip", "install", "--system", "requests"],
    ]


def test_debian_sources(make_manager, runner, root):
    """sources.list is rendered with the release codename."""
    config = HardnConfig(
        debian_repos=[
            "deb http://deb.debian.org/debian CODENAME main",
            "deb http://security.debian.org/debian-security CODENAME-security main",
        ]
    )
    manager = make_manager(config, runner=runner)

    manager.write_sources()

    assert (root / "etc/apt/sources.list").read_text() == (
        "deb http://deb.debian.org/debian bookworm main\n"
        "deb http://security.debian.org/debian-security bookworm-security main\n"
    )
    assert runner.calls == [["apt-get", "update"]]
    assert not (root / "etc/apt/sources.list.d").exists()


def test_empty_debian_repos_leave_sources_alone(make_manager, runner, root, read_log):
    """No configured repositories means sources.list is not touched."""
    manager = make_manager(runner=runner)

    manager.write_sources()

    assert not (root / "etc/apt/sources.list").exists()
    assert "No debianRepos configured" in read_log()


def test_proxmox_overlay(make_manager, runner, root, proxmox_facts):
    """Proxmox hosts get the overlay; commented lines are kept verbatim."""
    config = HardnConfig(
        debian_repos=["deb http://deb.debian.org/debian CODENAME main"],
        proxmox_src_repos=["deb http://download.proxmox.com/debian/pve CODENAME pve-no-subscription"],
        proxmox_ceph_repo=[
            "# deb https://enterprise.proxmox.com/debian/ceph-quincy CODENAME enterprise",
            "deb http://download.proxmox.com/debian/ceph-quincy CODENAME no-subscription",
        ],
    )
    manager = make_manager(config, facts=proxmox_facts, runner=runner)

    manager.write_sources()

    lists = root / "etc/apt/sources.list.d"
    assert (lists / "pve-install-repo.list").read_text() == (
        "deb http://download.proxmox.com/debian/pve bookworm pve-no-subscription\n"
    )
    assert (lists / "ceph.list").read_text() == (
        "# deb https://enterprise.proxmox.com/debian/ceph-quincy CODENAME enterprise\n"
        "deb http://download.proxmox.com/debian/ceph-quincy bookworm no-subscription\n"
    )
    assert not (lists / "pve-enterprise.list").exists()


def test_alpine_repositories(make_manager, runner, root, alpine_facts):
    """Alpine repositories track the release branch, testing only when enabled."""
    manager = make_manager(HardnConfig(alpine_testing_repo=True), facts=alpine_facts, runner=runner)

    manager.write_sources()

    assert (root / "etc/apk/repositories").read_text() == (
        "https://dl-cdn.alpinelinux.org/alpine/v3.19/main\n"
        "https://dl-cdn.alpinelinux.org/alpine/v3.19/community\n"
        "@testing https://dl-cdn.alpinelinux.org/alpine/edge/testing\n"
    )
    assert runner.calls == [["apk", "update"]]


def test_proxmox_packages_held_during_install(make_manager, runner, proxmox_facts):
    """Installed Proxmox packages are held for the batch and released after."""
    runner.respond(
        "dpkg-query", "-W", "-f=${binary:Package}\n",
        output="bash\nproxmox-ve\npve-manager:amd64\nlibc6:amd64\n",
    )
    manager = make_manager(HardnConfig(linux_core_packages=["htop"]), facts=proxmox_facts, runner=runner)

    manager.install_linux_packages()

    hold = runner.index("apt-mark", "hold", "proxmox-ve", "pve-manager")
    install = runner.index("apt-get", "install", "-y", "htop")
    unhold = runner.index("apt-mark", "unhold", "proxmox-ve", "pve-manager")
    assert hold < install < unhold


def test_holds_released_on_failure(make_manager, runner, proxmox_facts):
    """Holds are released even when installs fail."""
    runner.respond("dpkg-query", "-W", "-f=${binary:Package}\n", output="pve-manager\n")
    runner.respond("apt-get", "install", code=100)
    manager = make_manager(HardnConfig(linux_core_packages=["htop"]), facts=proxmox_facts, runner=runner)

    with pytest.raises(PackageInstallPartial):
        manager.install_linux_packages()

    assert runner.ran("apt-mark", "unhold", "pve-manager")


def test_dry_run_install_previews(make_manager, make_runner, make_steward, read_log):
    """Dry-run installs only log the command and still query state."""
    runner = make_runner(dry_run=True)
    manager = make_manager(runner=runner, steward_=make_steward(dry_run=True))

    report = manager.install_packages(["htop"])

    assert report.installed == ["htop"]
    assert runner.calls == [["dpkg-query", "-W", "-f=${Status}", "htop"]]
    log = read_log()
    assert "[DRY-RUN] Run: apt-get install -y htop" in log
    assert "INSTALLED" not in log
