from s3bin.cli import main

main(prog_name="s3bin")
