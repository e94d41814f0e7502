from kubelaunch.main import main

main()
