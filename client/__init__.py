import pestcheck

pestcheck.setup()
