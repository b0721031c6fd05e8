"""End-to-end tests for the CLI entry point with a fake provider."""

from unittest.mock import ANY, Mock, patch

import pytest
from click.testing import CliRunner

from ami_migrate import __version__
from ami_migrate.cli.main import (
    EXIT_CONFIG_ERROR,
    EXIT_GENERAL_ERROR,
    EXIT_NOT_FOUND,
    EXIT_PROVIDER_ERROR,
    EXIT_SUCCESS,
    EXIT_USER_CANCELLED,
    EXIT_WAIT_ERROR,
    main,
)
from ami_migrate.core.config import Config
from ami_migrate.core.exceptions import (
    InstanceNotFound,
    LaunchFailed,
    OperationCancelled,
    ProviderError,
    WaitTimeout,
)
from ami_migrate.lifecycle.models import MigrationResult
from ami_migrate.providers.models import InstanceState


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture(autouse=True)
def stored_config():
    """Keep the user's real config file out of the tests."""
    with patch('ami_migrate.cli.main.ConfigManager') as MockConfigManager:
        MockConfigManager.return_value.load_config.return_value = Config()
        yield MockConfigManager.return_value


@pytest.fixture
def fake_cli(fake_provider, orchestrator):
    """Point the CLI at the fake provider."""
    with patch('ami_migrate.cli.main.create_orchestrator', return_value=orchestrator), \
         patch('ami_migrate.cli.main.create_provider', return_value=fake_provider):
        yield fake_provider


@pytest.fixture
def mock_orchestrator():
    orchestrator = Mock()
    with patch('ami_migrate.cli.main.create_orchestrator', return_value=orchestrator):
        yield orchestrator


class TestGlobalOptions:

    def test_version(self, runner):
        result = runner.invoke(main, ['--version'])

        assert result.exit_code == EXIT_SUCCESS
        assert __version__ in result.output

    def test_help_lists_commands(self, runner):
        result = runner.invoke(main, ['--help'])

        assert result.exit_code == EXIT_SUCCESS
        for command in ('migrate', 'backup', 'restore', 'create', 'check', 'latest', 'start', 'stop', 'restart', 'delete'):
            assert command in result.output

    def test_options_override_stored_config(self, runner, stored_config):
        stored_config.load_config.return_value = Config(default_region='eu-west-1', max_wait=60)

        with patch('ami_migrate.cli.main.create_orchestrator') as create:
            result = runner.invoke(main, [
                '--region', 'us-west-2', '--timeout', '10', '--poll-interval', '0.5',
                'stop', '--instance-id', 'i-1',
            ])

        assert result.exit_code == EXIT_SUCCESS
        config = create.call_args[0][0]
        assert config.default_region == 'us-west-2'
        assert config.max_wait == 10
        assert config.poll_interval == 0.5

    def test_invalid_region_is_config_error(self, runner, mock_orchestrator):
        result = runner.invoke(main, ['--region', 'nowhere', 'stop', '--instance-id', 'i-1'])

        assert result.exit_code == EXIT_CONFIG_ERROR
        mock_orchestrator.stop_instance.assert_not_called()

    def test_negative_timeout_is_config_error(self, runner, mock_orchestrator):
        result = runner.invoke(main, ['--timeout', '-1', 'stop', '--instance-id', 'i-1'])

        assert result.exit_code == EXIT_CONFIG_ERROR


class TestMigrateCommand:

    def test_migrate_single_instance(self, runner, fake_cli):
        result = runner.invoke(main, ['migrate', '--instance-id', 'i-original', '--new-ami', 'ami-new'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'Migrated i-original to' in result.output
        assert fake_cli.instances['i-original'].state in (InstanceState.SHUTTING_DOWN, InstanceState.TERMINATED)

    def test_migrate_requires_ami(self, runner):
        result = runner.invoke(main, ['migrate', '--instance-id', 'i-original'])

        assert result.exit_code == 2
        assert '--new-ami' in result.output

    def test_migrate_unknown_instance(self, runner, fake_cli):
        result = runner.invoke(main, ['migrate', '--instance-id', 'i-missing', '--new-ami', 'ami-new'])

        assert result.exit_code == EXIT_NOT_FOUND
        assert 'i-missing' in result.output

    def test_migrate_tagged_instances(self, runner, fake_cli):
        fake_cli.instances['i-original'].tags['ami-migrate-if-running'] = 'enabled'

        result = runner.invoke(main, ['migrate', '--new-ami', 'ami-new'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'i-original' in result.output
        assert 'migrated' in result.output

    def test_bulk_failure_exit_code(self, runner, fake_cli):
        fake_cli.instances['i-original'].tags['ami-migrate-if-running'] = 'enabled'
        fake_cli.failures['launch_instance'] = ProviderError("capacity")

        result = runner.invoke(main, ['migrate', '--new-ami', 'ami-new'])

        assert result.exit_code == EXIT_GENERAL_ERROR
        assert 'failed' in result.output

    def test_wait_timeout_reports_replacement(self, runner, mock_orchestrator):
        error = WaitTimeout("Timed out", resource_kind='instance', resource_id='i-1',
                            target_state='stopped', last_state='stopping')
        error.step = 'await_original_stopped'
        error.replacement_instance_id = 'i-replacement'
        mock_orchestrator.migrate.side_effect = error

        result = runner.invoke(main, ['migrate', '--instance-id', 'i-1', '--new-ami', 'ami-new'])

        assert result.exit_code == EXIT_WAIT_ERROR
        assert 'await_original_stopped' in result.output
        assert 'i-replacement' in result.output

    def test_launch_failure_is_provider_error(self, runner, mock_orchestrator):
        mock_orchestrator.migrate.side_effect = LaunchFailed("launch failed", step='launch')

        result = runner.invoke(main, ['migrate', '--instance-id', 'i-1', '--new-ami', 'ami-new'])

        assert result.exit_code == EXIT_PROVIDER_ERROR

    def test_cancellation(self, runner, mock_orchestrator):
        mock_orchestrator.migrate.side_effect = OperationCancelled(step='await_new_running')

        result = runner.invoke(main, ['migrate', '--instance-id', 'i-1', '--new-ami', 'ami-new'])

        assert result.exit_code == EXIT_USER_CANCELLED
        assert 'cancelled' in result.output

    def test_cancel_event_is_passed(self, runner, mock_orchestrator):
        mock_orchestrator.migrate.return_value = MigrationResult('i-1', 'i-2', 'ami-new', 'shutting-down')

        result = runner.invoke(main, ['migrate', '--instance-id', 'i-1', '--new-ami', 'ami-new'])

        assert result.exit_code == EXIT_SUCCESS
        mock_orchestrator.migrate.assert_called_once_with('i-1', 'ami-new', ANY)
        cancel_event = mock_orchestrator.migrate.call_args[0][2]
        assert not cancel_event.is_set()


class TestBackupCommand:

    def test_backup_single_instance(self, runner, fake_cli):
        result = runner.invoke(main, ['backup', '--instance-id', 'i-original'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'Backup of i-original started' in result.output
        assert 'rhel9' in result.output

    def test_backup_tagged_instances_none_selected(self, runner, fake_cli):
        # running without the if-running tag
        result = runner.invoke(main, ['backup'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'No instances are tagged' in result.output


class TestRestoreCommand:

    @pytest.mark.parametrize('args', [
        [],
        ['--snapshot-id', 'snap-123', '--image-id', 'ami-new'],
    ])
    def test_exactly_one_source(self, runner, mock_orchestrator, args):
        result = runner.invoke(main, ['restore', '--instance-id', 'i-original'] + args)

        assert result.exit_code == EXIT_CONFIG_ERROR
        mock_orchestrator.restore_from_snapshot.assert_not_called()
        mock_orchestrator.restore_from_image.assert_not_called()

    def test_restore_from_snapshot(self, runner, fake_cli):
        fake_cli.add_snapshot('snap-123')

        result = runner.invoke(main, ['restore', '--instance-id', 'i-original', '--snapshot-id', 'snap-123'])

        assert result.exit_code == EXIT_SUCCESS
        assert '/dev/xvdf' in result.output

    def test_restore_from_image(self, runner, fake_cli):
        result = runner.invoke(main, ['restore', '--instance-id', 'i-original', '--image-id', 'ami-new'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'kept stopped' in result.output
        assert fake_cli.instances['i-original'].state == InstanceState.STOPPED

    def test_restore_unknown_snapshot(self, runner, fake_cli):
        result = runner.invoke(main, ['restore', '--instance-id', 'i-original', '--snapshot-id', 'snap-missing'])

        assert result.exit_code == EXIT_NOT_FOUND


class TestCreateCommand:

    def test_create_from_image(self, runner, fake_cli):
        result = runner.invoke(main, [
            'create', '--image', 'ami-new', '--type', 't3.small', '--key', 'ops-key', '--subnet', 'subnet-9',
        ])

        assert result.exit_code == EXIT_SUCCESS
        assert 'Created instance' in result.output
        assert 'subnet-9' in result.output
        _, template = [args for name, args in fake_cli.calls if name == 'launch_instance'][0]
        assert template.instance_type == 't3.small'
        assert template.key_name == 'ops-key'

    def test_create_defaults_to_t2_micro(self, runner, fake_cli):
        result = runner.invoke(main, ['create', '--image', 'ami-new', '--userdata', 'echo hi'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'User data:        [provided]' in result.output
        _, template = [args for name, args in fake_cli.calls if name == 'launch_instance'][0]
        assert template.instance_type == 't2.micro'
        assert template.user_data == 'echo hi'

    def test_create_from_latest(self, runner, fake_cli):
        fake_cli.images['ami-new'].tags['ami-migrate'] = 'latest'

        result = runner.invoke(main, ['create', '--latest'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'Using latest AMI ami-new' in result.output
        image_id, _ = [args for name, args in fake_cli.calls if name == 'launch_instance'][0]
        assert image_id == 'ami-new'

    def test_create_latest_none_tagged(self, runner, fake_cli):
        result = runner.invoke(main, ['create', '--latest', '--os', 'rhel9'])

        assert result.exit_code == EXIT_NOT_FOUND
        assert 'launch_instance' not in fake_cli.call_names()

    @pytest.mark.parametrize('args', [
        [],
        ['--image', 'ami-new', '--latest'],
        ['--image', 'ami-new', '--os', 'rhel9'],
    ])
    def test_create_needs_one_image_source(self, runner, mock_orchestrator, args):
        result = runner.invoke(main, ['create'] + args)

        assert result.exit_code == EXIT_CONFIG_ERROR
        assert '--latest' in result.output
        mock_orchestrator.create_instance.assert_not_called()

    def test_create_unknown_image(self, runner, fake_cli):
        result = runner.invoke(main, ['create', '--image', 'ami-missing'])

        assert result.exit_code == EXIT_NOT_FOUND


class TestCheckAndLatestCommands:

    def test_check_with_explicit_image(self, runner, fake_cli):
        result = runner.invoke(main, ['check', '--instance-id', 'i-original', '--latest-ami', 'ami-new'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'Migration Needed: yes' in result.output

    def test_check_by_os(self, runner, fake_cli):
        fake_cli.images['ami-old'].tags['ami-migrate'] = 'latest'

        result = runner.invoke(main, ['check', '--instance-id', 'i-original', '--os', 'rhel9'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'Migration Needed: no' in result.output

    def test_check_requires_one_target(self, runner, fake_cli):
        result = runner.invoke(main, ['check', '--instance-id', 'i-original'])

        assert result.exit_code == EXIT_CONFIG_ERROR

    def test_check_unknown_image(self, runner, fake_cli):
        result = runner.invoke(main, ['check', '--instance-id', 'i-original', '--latest-ami', 'ami-missing'])

        assert result.exit_code == EXIT_NOT_FOUND

    def test_latest(self, runner, fake_cli):
        fake_cli.images['ami-old'].tags['ami-migrate'] = 'latest'

        result = runner.invoke(main, ['latest', '--image-id', 'ami-new'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'ami-old tagged ami-migrate=outdated' in result.output
        assert fake_cli.images['ami-new'].tags['ami-migrate'] == 'latest'


class TestPowerCommands:

    def test_stop_and_start(self, runner, fake_cli):
        assert runner.invoke(main, ['stop', '--instance-id', 'i-original']).exit_code == EXIT_SUCCESS
        assert fake_cli.instances['i-original'].state == InstanceState.STOPPED

        result = runner.invoke(main, ['start', '--instance-id', 'i-original'])
        assert result.exit_code == EXIT_SUCCESS
        assert 'is running' in result.output

    def test_restart(self, runner, fake_cli):
        result = runner.invoke(main, ['restart', '--instance-id', 'i-original'])

        assert result.exit_code == EXIT_SUCCESS
        assert fake_cli.instances['i-original'].state == InstanceState.RUNNING

    def test_delete_asks_for_confirmation(self, runner, fake_cli):
        result = runner.invoke(main, ['delete', '--instance-id', 'i-original'], input='n\n')

        assert result.exit_code == 1
        assert 'terminate_instance' not in fake_cli.call_names()

    def test_delete_with_yes(self, runner, fake_cli):
        result = runner.invoke(main, ['delete', '--instance-id', 'i-original', '--yes'])

        assert result.exit_code == EXIT_SUCCESS
        assert 'shutting-down' in result.output

    def test_unauthorized_is_provider_error(self, runner, fake_cli):
        fake_cli.failures['stop_instance'] = ProviderError("denied", kind=ProviderError.UNAUTHORIZED)

        result = runner.invoke(main, ['stop', '--instance-id', 'i-original'])

        assert result.exit_code == EXIT_PROVIDER_ERROR
        assert 'denied' in result.output

    def test_not_found_is_exit_3(self, runner, mock_orchestrator):
        mock_orchestrator.start_instance.side_effect = InstanceNotFound('i-1', step='validate')

        assert runner.invoke(main, ['start', '--instance-id', 'i-1']).exit_code == EXIT_NOT_FOUND
