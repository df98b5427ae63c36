"""Tests for the webhook secret rotation script."""

from unittest.mock import AsyncMock, patch

from api.scripts import rotate_paddle_webhook_secret as script

MASKED_CONFIG = {
    "slug": "paddle",
    "name": "Paddle",
    "is_active": True,
    "webhook_secret_masked": "pdl_********abcd",
    "webhook_is_configured": True,
    "updated_at": None,
}


def test_main_passes_secret_and_activation(capsys):
    with patch.object(
        script, "rotate_webhook_secret", new=AsyncMock(return_value=MASKED_CONFIG)
    ) as rotate:
        exit_code = script.main(["--secret", " pdl_ntfset_new ", "--activate"])

    assert exit_code == 0
    rotate.assert_awaited_once_with(secret="pdl_ntfset_new", is_active=True, dry_run=False)
    output = capsys.readouterr().out
    assert "secret=pdl_********abcd" in output
    assert "pdl_ntfset_new" not in output


def test_main_dry_run_without_activation_flag(capsys):
    with patch.object(
        script, "rotate_webhook_secret", new=AsyncMock(return_value=MASKED_CONFIG)
    ) as rotate:
        script.main(["--secret", "pdl_ntfset_new", "--dry-run"])

    rotate.assert_awaited_once_with(secret="pdl_ntfset_new", is_active=None, dry_run=True)
    assert "(dry-run)" in capsys.readouterr().out


def test_main_rejects_blank_secret(capsys):
    with patch.object(script, "rotate_webhook_secret", new=AsyncMock()) as rotate:
        exit_code = script.main(["--secret", "   "])

    assert exit_code == 2
    rotate.assert_not_awaited()
